import asyncio
import json
from datetime import timedelta
from typing import List, Tuple

import pytest

from agent import replies
from agent.orchestrator import ConversationOrchestrator
from agent.transaction_extractor import TransactionExtractor
from agent.wallet_resolution import WalletResolutionEngine
from conftest import FinanceBackend, FakeTransport, fake_openai, make_wallets
from models.identity import UserMapping
from models.delivery import DeliveryStatus
from models.session import ConnectionUpdate, InboundMessage
from models.template import EventType, Trigger
from shared import time
from shared.auth_tokens import TokenProvider, issue_token
from shared.delivery import DeliveryPipeline
from shared.identity import PhoneIdentityResolver
from shared.triggers import TriggerService
from adapters.whatsapp.session import ChatSessionManager
from store.delivery_store import InMemoryDeliveryJobStore
from store.identity_store import InMemoryIdentityStore
from store.pending_selection_store import InMemoryPendingSelectionStore
from store.template_store import InMemoryTemplateStore, InMemoryTriggerStore

PHONE = "6281234567890"
CHAT_ID = f"{PHONE}@c.us"

MODEL_REPLIES = {
    "Gaji bulanan 5jt dari bank": {
        "type": "INCOME", "amount": "5jt", "category": "Gaji",
        "description": "Gaji bulanan", "date": "2025-01-15", "walletName": "bank", "confidence": 0.95,
    },
    "Beli makan siang 50rb": {
        "type": "EXPENSE", "amount": 50000, "category": "Makanan",
        "description": "Beli makan siang", "date": "2025-01-15", "confidence": 0.9,
    },
}


def _model(kw):
    text = kw["messages"][1]["content"]
    payload = MODEL_REPLIES.get(text)
    return json.dumps(payload) if payload else "Maaf, itu bukan transaksi."


class RecordingOutbox:
    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    async def enqueue(self, recipient, body, user_id, template_id=None):
        self.sent.append((recipient, body, user_id))
        return f"job-{len(self.sent)}"

    @property
    def bodies(self) -> List[str]:
        return [b for _, b, _ in self.sent]


class Harness:
    def __init__(self, wallets, verified=True, token=True, create_status=201, create_body=None, categories=None,
                 outbox=None):
        self.identity_store = InMemoryIdentityStore()
        self.identity_store.put(UserMapping(user_id="u1", phone=PHONE, is_verified=verified))
        self.backend = FinanceBackend(
            wallets=wallets,
            categories=categories if categories is not None else [{"id": "c-gaji", "name": "gaji"}],
            create_status=create_status,
            create_body=create_body,
        )
        finance = self.backend.client()
        self.tokens = TokenProvider(secret="s3cret", mint=False)
        if token:
            self.tokens.store_token("u1", issue_token("u1", "s3cret", timedelta(hours=1)))
        self.pending = InMemoryPendingSelectionStore()
        self.outbox = outbox if outbox is not None else RecordingOutbox()
        self.templates = InMemoryTemplateStore()
        self.trigger_store = InMemoryTriggerStore()
        self.orchestrator = ConversationOrchestrator(
            PhoneIdentityResolver(self.identity_store),
            TransactionExtractor(api_key="sk-test", client=fake_openai(_model)),
            WalletResolutionEngine(finance, self.pending),
            finance,
            self.tokens,
            self.outbox,
            TriggerService(self.trigger_store, self.templates, self.outbox),
        )

    async def say(self, text: str):
        await self.orchestrator.handle_inbound(CHAT_ID, text)


TWO = make_wallets(("Cash", "cash"), ("Bank BCA", "bank"))


@pytest.mark.asyncio
async def test_hint_resolves_wallet_and_creates_transaction():
    h = Harness(TWO)

    await h.say("Gaji bulanan 5jt dari bank")

    assert len(h.backend.created) == 1
    created = h.backend.created[0]
    assert created["type"] == "INCOME"
    assert created["amount"] == 5_000_000
    assert created["wallet_id"] == "w2"
    assert created["category_id"] == "c-gaji"
    assert created["date"] == "2025-01-15"
    assert h.backend.auth_headers[-1].startswith("Bearer ")

    assert len(h.outbox.sent) == 1
    recipient, body, user_id = h.outbox.sent[0]
    assert (recipient, user_id) == (PHONE, "u1")
    assert body.startswith("✅ Transaksi berhasil dibuat!")
    assert "💰 Jumlah: Rp 5.000.000" in body
    assert "📊 Tipe: Pemasukan" in body
    assert "🏷️ Kategori: Gaji" in body


@pytest.mark.asyncio
async def test_unverified_sender_is_told_to_verify():
    h = Harness(TWO, verified=False)

    await h.say("Gaji bulanan 5jt dari bank")

    assert h.outbox.sent == [(PHONE, replies.UNVERIFIED_NUMBER, "system")]
    assert h.backend.created == []


@pytest.mark.asyncio
async def test_unparseable_message_gets_examples():
    h = Harness(TWO)

    await h.say("halo apa kabar")

    assert h.outbox.bodies == [replies.COULD_NOT_UNDERSTAND]
    assert h.backend.created == []


@pytest.mark.asyncio
async def test_missing_token_asks_for_relogin():
    h = Harness(TWO, token=False)

    await h.say("Beli makan siang 50rb")

    assert h.outbox.bodies == [replies.RELOGIN_REQUIRED]


@pytest.mark.asyncio
async def test_no_wallets():
    h = Harness([])

    await h.say("Beli makan siang 50rb")

    assert h.outbox.bodies == [replies.NO_WALLET]
    assert len(h.pending) == 0


@pytest.mark.asyncio
async def test_choice_then_numeric_reply():
    h = Harness(TWO)

    await h.say("Beli makan siang 50rb")
    assert h.outbox.bodies[0].startswith("💰 Pilih wallet untuk transaksi ini:")
    assert "1. Cash (Default)" in h.outbox.bodies[0]
    assert "2. Bank BCA" in h.outbox.bodies[0]
    assert h.backend.created == []

    await h.say("2")

    assert len(h.backend.created) == 1
    assert h.backend.created[0]["wallet_id"] == "w2"
    assert h.backend.created[0]["description"] == "Beli makan siang"
    # no category named "Makanan" on the backend
    assert "category_id" not in h.backend.created[0]
    assert h.outbox.bodies[1].startswith("✅ Transaksi berhasil dibuat!")
    assert len(h.pending) == 0


@pytest.mark.asyncio
async def test_choice_by_name():
    h = Harness(TWO)

    await h.say("Beli makan siang 50rb")
    await h.say("cash")

    assert h.backend.created[0]["wallet_id"] == "w1"


@pytest.mark.asyncio
async def test_invalid_reply_keeps_selection_open():
    h = Harness(TWO)

    await h.say("Beli makan siang 50rb")
    await h.say("9")

    assert h.outbox.bodies[1] == replies.INVALID_WALLET_SELECTION
    assert h.backend.created == []
    assert len(h.pending) == 1

    await h.say("1")
    assert h.backend.created[0]["wallet_id"] == "w1"


@pytest.mark.asyncio
async def test_backend_rejection_is_reported():
    h = Harness(make_wallets(("Cash", "cash")), create_status=422, create_body={"message": "Saldo tidak cukup"})

    await h.say("Beli makan siang 50rb")

    assert h.outbox.bodies == [replies.transaction_failed("Saldo tidak cukup")]


@pytest.mark.asyncio
async def test_created_transaction_fires_triggers():
    h = Harness(TWO)
    template = h.templates.create(
        "big-income", "Pemasukan {{amount}} untuk {{description}}", ["amount", "description"]
    )
    h.trigger_store.create(Trigger(
        id="t1",
        name="big income",
        event_type=EventType.TRANSACTION_CREATED,
        conditions={"amountThreshold": 1_000_000, "transactionType": "INCOME"},
        template_id=template.id,
        created_at=time.utcnow(),
    ))

    await h.say("Gaji bulanan 5jt dari bank")

    assert len(h.outbox.sent) == 2
    assert h.outbox.sent[1] == (PHONE, "Pemasukan 5000000.0 untuk Gaji bulanan", "u1")


@pytest.mark.asyncio
async def test_unparseable_channel_is_dropped():
    h = Harness(TWO)

    await h.orchestrator.handle_inbound("not-a-phone@c.us", "Beli makan siang 50rb")

    assert h.outbox.sent == []


@pytest.mark.asyncio
async def test_inbound_message_is_answered_over_the_chat_session(tmp_path, sleep_recorder):
    transport = FakeTransport()
    session = ChatSessionManager(transport, auth_dir=str(tmp_path / "auth"), sleep=sleep_recorder)
    await session.initialize()
    await transport.emit(ConnectionUpdate(connection="open"))

    jobs = InMemoryDeliveryJobStore()
    pipeline = DeliveryPipeline(jobs, session.send_message, sleep=sleep_recorder)
    h = Harness(TWO, outbox=pipeline)
    session.on_inbound(h.orchestrator.handle_inbound)

    pipeline.start()
    try:
        await transport.emit(InboundMessage(chat_id=CHAT_ID, text="Gaji bulanan 5jt dari bank"))
        await pipeline.drain()
    finally:
        await pipeline.stop()

    assert len(transport.sent) == 1
    chat_id, text = transport.sent[0]
    assert chat_id == CHAT_ID
    assert text.startswith("✅ Transaksi berhasil dibuat!")

    [job] = jobs._jobs.values()
    assert job.status == DeliveryStatus.SENT
    assert (job.recipient, job.user_id) == (PHONE, "u1")
    assert [e.status for e in jobs.all_logs(job.id)] == [DeliveryStatus.SENT]


@pytest.mark.asyncio
async def test_per_phone_locks_are_released_after_each_message():
    h = Harness(TWO, verified=False)

    await asyncio.gather(*(
        h.orchestrator.handle_inbound(f"62812{n:08d}@c.us", "halo") for n in range(200)
    ))

    assert len(h.orchestrator._locks) == 0
    assert len(h.orchestrator.wallets._locks) == 0
