# agent/wallet_resolution.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from adapters.backend.finance_api import FinanceApiClient
from models.transaction import TransactionDraft
from models.wallet import PendingWalletSelection, WalletDecision, WalletOption
from shared import time
from shared.locks import KeyedLocks
from store.pending_selection_store import PendingSelectionStore

logger = logging.getLogger(__name__)

PENDING_SELECTION_TTL_SECONDS = 5 * 60

NO_PENDING_SELECTION = "no pending selection"
UNRECOGNIZED_SELECTION = "unrecognized selection"


def match_wallet(wallets: Iterable[WalletOption], hint: Optional[str]) -> Optional[WalletOption]:
    """Exact (case-insensitive) name/type match first, then substring either way. Store order wins ties."""
    h = (hint or "").strip().lower()
    if not h:
        return None
    wallets = list(wallets)

    for w in wallets:
        if w.name.lower() == h or (w.type and w.type.lower() == h):
            return w

    for w in wallets:
        name = w.name.lower()
        wtype = (w.type or "").lower()
        if h in name or (name and name in h):
            return w
        if wtype and (h in wtype or wtype in h):
            return w
    return None


def format_wallet_list(options: List[WalletOption]) -> str:
    lines = ["💰 Pilih wallet untuk transaksi ini:", ""]
    for i, w in enumerate(options, start=1):
        badge = " (Default)" if w.is_default else ""
        lines.append(f"{i}. {w.name}{badge}")
    lines.append("")
    lines.append("Balas dengan nomor (1, 2, 3...) atau nama wallet.")
    return "\n".join(lines)


class WalletResolutionEngine:
    """
    Picks the wallet a transaction goes to.

    decide(): fresh decision from the live wallet list. One wallet is taken as-is,
    several are matched against the draft's wallet hint, otherwise the options are
    parked as a pending selection for this channel and the caller asks the user.

    resume(): consumes the pending selection with the user's reply (1-based index
    or wallet name). A consumed or expired selection always yields Invalid.
    """

    def __init__(
        self,
        finance: FinanceApiClient,
        pending: PendingSelectionStore,
        ttl_seconds: float = PENDING_SELECTION_TTL_SECONDS,
    ):
        self.finance = finance
        self.pending = pending
        self.ttl_seconds = ttl_seconds
        self._locks = KeyedLocks()

    def has_pending(self, channel_id: str) -> bool:
        return self.pending.get(channel_id) is not None

    async def decide(
        self,
        auth_token: str,
        user_id: str,
        draft: TransactionDraft,
        channel_id: str,
    ) -> WalletDecision:
        wallets = await self.finance.list_wallets(auth_token)

        if not wallets:
            logger.info("[wallet] user %s has no wallets", user_id)
            return WalletDecision.cannot_proceed()

        if len(wallets) == 1:
            logger.info("[wallet] single wallet auto-selected: %s", wallets[0].name)
            return WalletDecision.resolved(wallets[0].id)

        if draft.wallet_hint:
            match = match_wallet(wallets, draft.wallet_hint)
            if match is not None:
                logger.info("[wallet] hint %r matched %s", draft.wallet_hint, match.name)
                return WalletDecision.resolved(match.id)
            logger.info("[wallet] hint %r matched nothing, asking user", draft.wallet_hint)

        selection = PendingWalletSelection(
            channel_id=channel_id,
            user_id=user_id,
            draft=draft,
            auth_token=auth_token,
            options=wallets,
            created_at=time.utcnow(),
        )
        async with self._locks.hold(channel_id):
            self.pending.put(selection, self.ttl_seconds)
        return WalletDecision.needs_choice(wallets)

    async def resume(self, channel_id: str, reply: str) -> WalletDecision:
        async with self._locks.hold(channel_id):
            selection = self.pending.get(channel_id)
            if selection is None:
                return WalletDecision.invalid(NO_PENDING_SELECTION)

            chosen = self._pick(selection.options, reply)
            if chosen is None:
                logger.info("[wallet] unrecognized selection %r on %s", reply, channel_id)
                return WalletDecision.invalid(UNRECOGNIZED_SELECTION)

            self.pending.delete(channel_id)

        logger.info("[wallet] %s chose %s", channel_id, chosen.name)
        return WalletDecision.resolved(chosen.id, selection=selection)

    @staticmethod
    def _pick(options: List[WalletOption], reply: str) -> Optional[WalletOption]:
        text = (reply or "").strip()
        if not text:
            return None
        try:
            index = int(text)
        except ValueError:
            index = None
        if index is not None and 1 <= index <= len(options):
            return options[index - 1]
        return match_wallet(options, text)
