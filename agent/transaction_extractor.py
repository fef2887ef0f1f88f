# agent/transaction_extractor.py
from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any, Dict, Optional, Union

from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError
from pydantic import ValidationError

from agent.prompts import TRANSACTION_EXTRACTION_PROMPT
from models.transaction import TransactionDraft, TransactionKind
from observability.obs import mark_error, safe_update_current_span_io, span_attrs
from shared import time

logger = logging.getLogger(__name__)

# Error codes
ERROR_MISSING_API_KEY = "MISSING_API_KEY"
ERROR_UNREACHABLE = "ENDPOINT_UNREACHABLE"
ERROR_HTTP_STATUS = "HTTP_STATUS"
ERROR_EMPTY_CONTENT = "EMPTY_CONTENT"
ERROR_UNPARSEABLE = "UNPARSEABLE_CONTENT"
ERROR_INVALID_DATA = "INVALID_TRANSACTION_DATA"


class ExtractionError(Exception):
    def __init__(self, code: str, message: str, raw: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.raw = raw

    def __repr__(self) -> str:
        return f"ExtractionError(code={self.code!r}, message={self.message!r})"


_MULTIPLIERS = {
    "rb": 1_000, "ribu": 1_000, "k": 1_000,
    "jt": 1_000_000, "juta": 1_000_000,
}
_AMOUNT_RE = re.compile(r"^([\d.,]+)\s*(rb|ribu|k|jt|juta)?$")


def coerce_amount(value: Any) -> Optional[float]:
    """Number from a model-provided amount: 50000, "50000", "50rb", "1,5jt", "Rp 50.000"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    s = value.strip().lower().replace("rp", "").replace(" ", "")
    m = _AMOUNT_RE.match(s)
    if not m:
        return None
    number, unit = m.group(1), m.group(2)

    if unit:
        number = number.replace(",", ".")
        if number.count(".") > 1:
            return None
        try:
            return float(number) * _MULTIPLIERS[unit]
        except ValueError:
            return None

    groups = re.split(r"[.,]", number)
    if len(groups) > 1 and all(len(g) == 3 for g in groups[1:]):
        # thousands separators: "50.000", "1,250,000"
        number = "".join(groups)
    else:
        number = number.replace(",", ".")
    try:
        return float(number)
    except ValueError:
        return None


def find_json_object(content: str) -> Optional[Dict[str, Any]]:
    """First well-formed JSON object embedded anywhere in `content`."""
    try:
        parsed = json.loads(content)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    idx = content.find("{")
    while idx != -1:
        try:
            parsed, _ = decoder.raw_decode(content, idx)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
        idx = content.find("{", idx + 1)
    return None


def _parse_date(value: Any) -> date:
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            logger.warning("Unparseable date from model: %r, using today", value)
    return time.today()


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def build_draft(payload: Dict[str, Any]) -> TransactionDraft:
    """Validate a parsed model payload into a TransactionDraft or raise ExtractionError."""
    kind_raw = _clean_str(payload.get("type") or payload.get("kind"))
    amount = coerce_amount(payload.get("amount"))
    description = _clean_str(payload.get("description"))

    try:
        kind = TransactionKind(kind_raw.upper()) if kind_raw else None
    except ValueError:
        kind = None

    if kind is None or amount is None or amount <= 0 or description is None:
        raise ExtractionError(ERROR_INVALID_DATA, "Invalid transaction data from model", raw=payload)

    confidence = payload.get("confidence")
    try:
        confidence = min(max(float(confidence), 0.0), 1.0) if confidence is not None else 0.0
    except (TypeError, ValueError):
        confidence = 0.0

    try:
        return TransactionDraft(
            kind=kind,
            amount=amount,
            category=_clean_str(payload.get("category")),
            description=description,
            occurred_on=_parse_date(payload.get("date")),
            wallet_hint=_clean_str(payload.get("walletName") or payload.get("wallet_hint")),
            confidence=confidence,
        )
    except ValidationError as e:
        raise ExtractionError(ERROR_INVALID_DATA, str(e), raw=payload) from e


class TransactionExtractor:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        if not api_key:
            logger.warning("INFERENCE_API_KEY not set. Transaction extraction will not work.")

    async def extract(self, text: str) -> TransactionDraft:
        if not self.api_key or self.client is None:
            raise ExtractionError(ERROR_MISSING_API_KEY, "Inference API key not configured")

        preview = (text[:200] + "…") if len(text) > 200 else text
        logger.info("[extract] Extracting transaction from message: %s", preview)

        with span_attrs("extractor.llm_call", as_type="generation", model=self.model) as gen:
            safe_update_current_span_io(input={"text": text}, redact=True)
            system_prompt = TRANSACTION_EXTRACTION_PROMPT.replace("{{TODAY}}", time.today().isoformat())
            try:
                resp = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": text},
                    ],
                    temperature=0.3,
                    max_tokens=500,
                )
            except APIStatusError as e:
                logger.error("[extract] Inference API error: %s", e.status_code)
                mark_error(e, kind="ExtractionError.http_status", span=gen)
                raise ExtractionError(ERROR_HTTP_STATUS, f"API error: {e.status_code}") from e
            except APIConnectionError as e:
                logger.error("[extract] Inference endpoint unreachable: %s", e)
                mark_error(e, kind="ExtractionError.unreachable", span=gen)
                raise ExtractionError(ERROR_UNREACHABLE, "Inference endpoint unreachable") from e
            except APIError as e:
                logger.error("[extract] Inference call failed: %s", e)
                mark_error(e, kind="ExtractionError.api", span=gen)
                raise ExtractionError(ERROR_UNREACHABLE, str(e)) from e

            choices = getattr(resp, "choices", None) or []
            content = (choices[0].message.content or "").strip() if choices else ""
            if not content:
                logger.warning("[extract] Empty model content.")
                raise ExtractionError(ERROR_EMPTY_CONTENT, "No content in API response")

            payload = find_json_object(content)
            if payload is None:
                logger.error("[extract] Failed to parse model response: %r", content[:500])
                raise ExtractionError(ERROR_UNPARSEABLE, "Failed to parse model response", raw=content)

            draft = build_draft(payload)
            safe_update_current_span_io(output=draft)
            logger.info("[extract] Transaction extracted: %s %s (%s)", draft.kind.value, draft.amount, draft.description)
            return draft

    async def try_extract(self, text: str) -> Union[TransactionDraft, ExtractionError]:
        try:
            return await self.extract(text)
        except ExtractionError as e:
            return e
