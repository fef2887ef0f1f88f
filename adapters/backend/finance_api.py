import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from models.transaction import CreateTransactionResult, TransactionDraft
from models.wallet import Category, WalletOption

logger = logging.getLogger(__name__)


def _error_message(exc: Exception) -> str:
    """Prefer the backend's own message over the HTTP library's."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            msg = body.get("message") or body.get("error")
            if isinstance(msg, str) and msg:
                return msg
        return f"HTTP {exc.response.status_code}"
    return str(exc) or exc.__class__.__name__


class FinanceApiClient:
    """Wallet, category and transaction endpoints of the finance backend, called with the user's bearer token."""

    def __init__(self, base_url: str, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, auth_token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {auth_token}", "Content-Type": "application/json"},
        )

    async def _get_list(self, auth_token: str, path: str) -> List[Dict[str, Any]]:
        async with self._client(auth_token) as client:
            r = await client.get(path)
            r.raise_for_status()
            data = r.json().get("data") or []
            return [d for d in data if isinstance(d, dict)]

    async def list_wallets(self, auth_token: str) -> List[WalletOption]:
        rows = await self._get_list(auth_token, "/api/wallets")
        return [WalletOption.model_validate(row) for row in rows]

    async def list_categories(self, auth_token: str) -> List[Category]:
        rows = await self._get_list(auth_token, "/api/categories")
        return [Category.model_validate(row) for row in rows]

    async def find_category_id(self, auth_token: str, name: Optional[str]) -> Optional[str]:
        """Case-insensitive exact name match; lookup failures mean 'no category'."""
        if not name:
            return None
        try:
            categories = await self.list_categories(auth_token)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Category lookup failed, continuing without category: %s", e)
            return None
        wanted = name.strip().lower()
        for c in categories:
            if c.name.strip().lower() == wanted:
                return c.id
        return None

    async def create_transaction(
        self,
        auth_token: str,
        draft: TransactionDraft,
        wallet_id: str,
        category_id: Optional[str] = None,
    ) -> CreateTransactionResult:
        payload: Dict[str, Any] = {
            "type": draft.kind.value,
            "amount": draft.amount,
            "description": draft.description,
            "wallet_id": wallet_id,
            "date": (draft.occurred_on or date.today()).isoformat(),
        }
        if category_id:
            payload["category_id"] = category_id

        try:
            async with self._client(auth_token) as client:
                r = await client.post("/api/transactions", json=payload)
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            msg = _error_message(e)
            logger.error("Error creating transaction: %s", msg)
            return CreateTransactionResult(success=False, error=msg)

        tx_id = (body.get("data") or {}).get("id") if isinstance(body, dict) else None
        logger.info("Transaction created: %s", tx_id)
        return CreateTransactionResult(success=True, transaction_id=str(tx_id) if tx_id is not None else None)
