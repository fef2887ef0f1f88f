# obs.py (Langfuse v3-compatible)
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from observability.langfuse_client import get_langfuse

Json = Dict[str, Any]

SENSITIVE_FIELDS = {"text", "message", "body", "token", "auth_token"}


def _safe_dump(obj: Any) -> Any:
    try:
        md = getattr(obj, "model_dump", None)
        if callable(md):
            return md(mode="json")
        return obj
    except Exception:
        return obj


def _redact(val: Any) -> Any:
    if not isinstance(val, dict):
        return val
    return {k: ("***" if k in SENSITIVE_FIELDS else v) for k, v in val.items()}


def _safe_span_update(span, **kwargs: Any) -> None:
    try:
        span.update(**kwargs)
    except Exception:
        # Never let observability crash business logic
        pass


def safe_update_current_span_io(*, input: Optional[Any] = None,
                                output: Optional[Any] = None,
                                redact: bool = False) -> None:
    try:
        payload = {}
        if input is not None:
            v = _safe_dump(input)
            payload["input"] = _redact(v) if redact else v
        if output is not None:
            v = _safe_dump(output)
            payload["output"] = _redact(v) if redact else v
        if payload:
            get_langfuse().update_current_span(**payload)
    except Exception:
        pass


def mark_error(exc: Exception, *, kind: str = "UnhandledError", span=None, extra: Optional[Json] = None) -> None:
    """
    Minimal error marking; no payload dumping. Add explicit `extra` if needed.
    """
    meta: Json = {"status": "error", "error.kind": kind, "error.type": type(exc).__name__}
    if extra:
        meta["error.extra"] = extra

    if span is not None:
        _safe_span_update(span, metadata=meta, status_message=str(exc), level="ERROR")
        return

    try:
        get_langfuse().update_current_span(metadata=meta, status_message=str(exc), level="ERROR")
    except Exception:
        pass


@contextmanager
def span_attrs(name: str, as_type: str = "span", **attrs: Any):
    """
    Lightweight nested observation with fixed metadata.
    For LLM calls, pass as_type="generation" and model="gpt-4o-mini".
    """
    t0 = time.perf_counter()

    # Pull out model if provided so it becomes a first-class field
    model = attrs.pop("model", None)
    kwargs: Json = {"name": name, "as_type": as_type}
    if model and as_type == "generation":
        kwargs["model"] = model

    with get_langfuse().start_as_current_observation(**kwargs) as s:
        if attrs:
            _safe_span_update(s, metadata=dict(attrs))

        try:
            yield s
            dur_ms = int((time.perf_counter() - t0) * 1000)
            _safe_span_update(s, metadata={"status": "ok", "duration.ms": dur_ms})
        except Exception as e:
            dur_ms = int((time.perf_counter() - t0) * 1000)
            _safe_span_update(
                s,
                metadata={
                    "status": "error",
                    "error.kind": type(e).__name__,
                    "duration.ms": dur_ms,
                },
                status_message=str(e),
                level="ERROR",
            )
            raise
