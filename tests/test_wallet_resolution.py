import asyncio
from datetime import date, timedelta

import pytest

from agent.wallet_resolution import (
    NO_PENDING_SELECTION,
    UNRECOGNIZED_SELECTION,
    WalletResolutionEngine,
    format_wallet_list,
    match_wallet,
)
from conftest import FinanceBackend, make_wallets
from models.transaction import TransactionDraft, TransactionKind
from models.wallet import ResolutionStatus, WalletOption
from shared import time
from store.pending_selection_store import InMemoryPendingSelectionStore

CHANNEL = "6281234567890"


def _draft(hint=None) -> TransactionDraft:
    return TransactionDraft(
        kind=TransactionKind.EXPENSE,
        amount=50000,
        description="Beli makan siang",
        occurred_on=date(2025, 1, 15),
        wallet_hint=hint,
    )


def _engine(wallets, ttl=300):
    backend = FinanceBackend(wallets=wallets)
    pending = InMemoryPendingSelectionStore()
    return WalletResolutionEngine(backend.client(), pending, ttl_seconds=ttl), pending


TWO = make_wallets(("Cash", "cash"), ("Bank BCA", "bank"))


@pytest.mark.asyncio
async def test_zero_wallets_cannot_proceed():
    engine, pending = _engine([])

    decision = await engine.decide("tok", "u1", _draft("bank"), CHANNEL)

    assert decision.status == ResolutionStatus.CANNOT_PROCEED
    assert len(pending) == 0


@pytest.mark.asyncio
async def test_single_wallet_ignores_hint():
    engine, pending = _engine(make_wallets(("Dompet", "cash")))

    decision = await engine.decide("tok", "u1", _draft("credit card"), CHANNEL)

    assert decision.status == ResolutionStatus.RESOLVED
    assert decision.wallet_id == "w1"
    assert len(pending) == 0


@pytest.mark.asyncio
async def test_hint_matches_substring_of_name():
    engine, _ = _engine(make_wallets(("Cash", "cash"), ("Bank BCA", "savings")))

    decision = await engine.decide("tok", "u1", _draft("bank"), CHANNEL)

    assert decision.status == ResolutionStatus.RESOLVED
    assert decision.wallet_id == "w2"


@pytest.mark.asyncio
async def test_no_hint_needs_choice_in_store_order(fake_clock):
    engine, pending = _engine(TWO)

    decision = await engine.decide("tok", "u1", _draft(), CHANNEL)

    assert decision.status == ResolutionStatus.NEEDS_CHOICE
    assert [w.name for w in decision.options] == ["Cash", "Bank BCA"]
    stored = pending.get(CHANNEL)
    assert stored.user_id == "u1"
    assert stored.auth_token == "tok"
    assert stored.created_at == fake_clock


@pytest.mark.asyncio
async def test_unmatched_hint_needs_choice():
    engine, _ = _engine(TWO)

    decision = await engine.decide("tok", "u1", _draft("gopay"), CHANNEL)

    assert decision.status == ResolutionStatus.NEEDS_CHOICE


@pytest.mark.asyncio
async def test_resume_by_index_then_second_resume_is_invalid():
    engine, pending = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    first = await engine.resume(CHANNEL, "2")
    second = await engine.resume(CHANNEL, "2")

    assert first.status == ResolutionStatus.RESOLVED
    assert first.wallet_id == "w2"
    assert first.selection.draft.description == "Beli makan siang"
    assert second.status == ResolutionStatus.INVALID
    assert second.reason == NO_PENDING_SELECTION
    assert len(pending) == 0
    assert len(engine._locks) == 0


@pytest.mark.asyncio
async def test_resume_by_name():
    engine, _ = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    decision = await engine.resume(CHANNEL, "cash")

    assert decision.status == ResolutionStatus.RESOLVED
    assert decision.wallet_id == "w1"


@pytest.mark.asyncio
async def test_out_of_range_keeps_selection_for_retry():
    engine, pending = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    bad = await engine.resume(CHANNEL, "3")
    good = await engine.resume(CHANNEL, "1")

    assert bad.status == ResolutionStatus.INVALID
    assert bad.reason == UNRECOGNIZED_SELECTION
    assert good.status == ResolutionStatus.RESOLVED
    assert good.wallet_id == "w1"


@pytest.mark.asyncio
async def test_expired_selection_is_invalid(fake_clock):
    engine, pending = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    time.advance_fake_utcnow(timedelta(minutes=5, seconds=1))
    decision = await engine.resume(CHANNEL, "2")

    assert decision.status == ResolutionStatus.INVALID
    assert decision.reason == NO_PENDING_SELECTION
    assert len(pending) == 0


@pytest.mark.asyncio
async def test_new_decision_overwrites_pending():
    engine, pending = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)
    await engine.decide("tok-2", "u1", _draft("ovo"), CHANNEL)

    assert len(pending) == 1
    assert pending.get(CHANNEL).auth_token == "tok-2"


@pytest.mark.asyncio
async def test_concurrent_resumes_consume_once():
    engine, _ = _engine(TWO)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    results = await asyncio.gather(*(engine.resume(CHANNEL, "1") for _ in range(5)))

    assert sum(r.status == ResolutionStatus.RESOLVED for r in results) == 1


@pytest.mark.asyncio
async def test_scheduled_timeout_purges_entry():
    engine, pending = _engine(TWO, ttl=0.01)
    await engine.decide("tok", "u1", _draft(), CHANNEL)

    await asyncio.sleep(0.05)

    assert len(pending) == 0


def test_match_wallet_exact_beats_substring():
    wallets = [
        WalletOption(id="a", name="Bank Mandiri", wallet_type="bank"),
        WalletOption(id="b", name="Bank", wallet_type="bank"),
    ]
    assert match_wallet(wallets, "BANK").id == "a"  # type "bank" matches exactly on the first
    assert match_wallet(wallets, "bank mandiri").id == "a"
    assert match_wallet(wallets, "dari bank mandiri").id == "a"
    assert match_wallet(wallets, "") is None


def test_match_wallet_by_type():
    wallets = [WalletOption(id="a", name="Dompet", wallet_type="cash"),
               WalletOption(id="b", name="GoPay", wallet_type="e-wallet")]
    assert match_wallet(wallets, "e-wallet").id == "b"
    assert match_wallet(wallets, "pakai cash").id == "a"


def test_format_wallet_list():
    options = [WalletOption(id="w1", name="Cash", wallet_type="cash", is_default=True),
               WalletOption(id="w2", name="Bank BCA", wallet_type="bank")]

    text = format_wallet_list(options)

    assert text.splitlines()[0] == "💰 Pilih wallet untuk transaksi ini:"
    assert "1. Cash (Default)" in text
    assert "2. Bank BCA" in text
    assert "(Default)" not in text.split("2. Bank BCA")[1].splitlines()[0]
    assert text.endswith("Balas dengan nomor (1, 2, 3...) atau nama wallet.")
