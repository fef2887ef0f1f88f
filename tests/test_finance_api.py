from datetime import date

import httpx
import pytest

from adapters.backend.finance_api import FinanceApiClient
from conftest import FinanceBackend, make_wallets
from models.transaction import TransactionDraft, TransactionKind


def _draft(**kw) -> TransactionDraft:
    base = dict(kind=TransactionKind.EXPENSE, amount=75000, description="Bayar listrik",
                occurred_on=date(2025, 1, 10), category="Tagihan")
    base.update(kw)
    return TransactionDraft(**base)


@pytest.mark.asyncio
async def test_list_wallets_maps_rows():
    backend = FinanceBackend(wallets=make_wallets(("Cash", "cash"), ("Bank BCA", "bank")))

    wallets = await backend.client().list_wallets("tok-1")

    assert [(w.id, w.name, w.type, w.is_default) for w in wallets] == [
        ("w1", "Cash", "cash", True),
        ("w2", "Bank BCA", "bank", False),
    ]
    assert backend.auth_headers == ["Bearer tok-1"]


@pytest.mark.asyncio
async def test_find_category_is_case_insensitive_exact():
    backend = FinanceBackend(categories=[{"id": "c1", "name": "Tagihan Rumah"}, {"id": "c2", "name": "tagihan"}])
    client = backend.client()

    assert await client.find_category_id("tok", "Tagihan") == "c2"
    assert await client.find_category_id("tok", "rumah") is None
    assert await client.find_category_id("tok", None) is None


@pytest.mark.asyncio
async def test_category_lookup_failure_means_no_category():
    def handler(request):
        return httpx.Response(500, json={"message": "boom"})

    client = FinanceApiClient("http://backend.test", transport=httpx.MockTransport(handler))

    assert await client.find_category_id("tok", "Tagihan") is None


@pytest.mark.asyncio
async def test_wallet_listing_errors_propagate():
    def handler(request):
        return httpx.Response(401, json={"message": "expired"})

    client = FinanceApiClient("http://backend.test", transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        await client.list_wallets("tok")


@pytest.mark.asyncio
async def test_create_transaction_payload():
    backend = FinanceBackend()

    result = await backend.client().create_transaction("tok", _draft(), "w2", "c7")

    assert result.success
    assert result.transaction_id == "tx-1"
    assert backend.created == [{
        "type": "EXPENSE",
        "amount": 75000,
        "description": "Bayar listrik",
        "wallet_id": "w2",
        "date": "2025-01-10",
        "category_id": "c7",
    }]


@pytest.mark.asyncio
async def test_create_transaction_without_category_omits_field():
    backend = FinanceBackend()

    await backend.client().create_transaction("tok", _draft(), "w1")

    assert "category_id" not in backend.created[0]


@pytest.mark.asyncio
async def test_create_transaction_reports_backend_message():
    backend = FinanceBackend(create_status=400, create_body={"error": "Wallet not found"})

    result = await backend.client().create_transaction("tok", _draft(), "w404")

    assert not result.success
    assert result.error == "Wallet not found"


@pytest.mark.asyncio
async def test_create_transaction_without_message_reports_status():
    backend = FinanceBackend(create_status=503, create_body={})

    result = await backend.client().create_transaction("tok", _draft(), "w1")

    assert result.error == "HTTP 503"
