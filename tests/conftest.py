"""Shared test fixtures."""
import asyncio
import json
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

os.environ.setdefault("LANGFUSE_TRACING_ENABLED", "false")
os.environ.setdefault("STORE_BACKEND", "memory")

import httpx
import pytest

import observability.langfuse_client as langfuse_client
from adapters.backend.finance_api import FinanceApiClient
from adapters.whatsapp.transport import ChatTransport
from shared import time
from shared.config import Settings

FIXED_NOW = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


class _NullSpan:
    def update(self, **kwargs):
        pass


class _NullLangfuse:
    @contextmanager
    def start_as_current_observation(self, **kwargs):
        yield _NullSpan()

    def update_current_span(self, **kwargs):
        pass


@pytest.fixture(autouse=True)
def no_tracing(monkeypatch):
    monkeypatch.setattr(langfuse_client, "_langfuse", _NullLangfuse())


@pytest.fixture
def fake_clock():
    time.set_fake_utcnow(FIXED_NOW)
    yield FIXED_NOW
    time.clear_fake_utcnow()


class SleepRecorder:
    """Stand-in for asyncio.sleep: records the delay and only yields to the loop."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


class FakeTransport(ChatTransport):
    def __init__(self):
        self.sent: List[tuple] = []
        self.on_event = None
        self.opened = 0
        self.closed = 0
        self.fail_open: Optional[Exception] = None
        self.fail_send: Optional[Exception] = None

    async def negotiate_version(self):
        return "2.3000.1"

    async def open(self, auth_dir, on_event):
        if self.fail_open is not None:
            raise self.fail_open
        self.opened += 1
        self.on_event = on_event

    async def send_text(self, chat_id, text):
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append((chat_id, text))
        return f"msg-{len(self.sent)}"

    async def close(self):
        self.closed += 1

    async def emit(self, event):
        await self.on_event(event)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        store_backend="memory",
        jwt_secret="test-secret",
        api_key="test-api-key",
        whatsapp_auth_path=str(tmp_path / "auth"),
        inference_api_key="sk-test",
        backend_api_url="http://backend.test",
    )


def make_wallets(*names_and_types, default_index: int = 0) -> List[Dict[str, Any]]:
    """Wallet rows as the finance backend returns them."""
    rows = []
    for i, (name, wallet_type) in enumerate(names_and_types):
        rows.append({"id": f"w{i + 1}", "name": name, "wallet_type": wallet_type, "is_default": i == default_index})
    return rows


class FinanceBackend:
    """In-process finance REST backend served through httpx.MockTransport."""

    def __init__(self, wallets=None, categories=None, create_status: int = 201, create_body=None):
        self.wallets = wallets or []
        self.categories = categories or []
        self.create_status = create_status
        self.create_body = create_body
        self.created: List[Dict[str, Any]] = []
        self.auth_headers: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.auth_headers.append(request.headers.get("authorization", ""))
        if request.url.path == "/api/wallets":
            return httpx.Response(200, json={"data": self.wallets})
        if request.url.path == "/api/categories":
            return httpx.Response(200, json={"data": self.categories})
        if request.url.path == "/api/transactions" and request.method == "POST":
            payload = json.loads(request.content)
            self.created.append(payload)
            body = self.create_body if self.create_body is not None else {"data": {"id": f"tx-{len(self.created)}"}}
            return httpx.Response(self.create_status, json=body)
        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> FinanceApiClient:
        return FinanceApiClient("http://backend.test", transport=httpx.MockTransport(self.handler))


def completion(content: Optional[str]):
    """Minimal chat.completions response object."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_openai(content_or_fn) -> SimpleNamespace:
    """Object shaped like AsyncOpenAI with chat.completions.create as an AsyncMock."""
    if callable(content_or_fn):
        create = AsyncMock(side_effect=lambda **kw: completion(content_or_fn(kw)))
    else:
        create = AsyncMock(return_value=completion(content_or_fn))
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
