# agent/orchestrator.py
from __future__ import annotations

import logging
from typing import Optional

import httpx

from adapters.backend.finance_api import FinanceApiClient
from agent import replies
from agent.transaction_extractor import ExtractionError, TransactionExtractor
from agent.wallet_resolution import NO_PENDING_SELECTION, WalletResolutionEngine, format_wallet_list
from models.template import EventType
from models.transaction import TransactionDraft
from models.wallet import ResolutionStatus
from observability.obs import span_attrs
from shared.auth_tokens import TokenProvider
from shared.delivery import DeliveryPipeline
from shared.identity import PhoneIdentityResolver
from shared.locks import KeyedLocks
from shared.triggers import TriggerService

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"


class ConversationOrchestrator:
    """
    Handles one inbound chat message end to end:
    identity -> pending wallet choice or fresh extraction -> wallet -> transaction -> reply.
    Every reply goes through the delivery pipeline. Messages from the same phone
    are handled one at a time.
    """

    def __init__(
        self,
        identity: PhoneIdentityResolver,
        extractor: TransactionExtractor,
        wallets: WalletResolutionEngine,
        finance: FinanceApiClient,
        tokens: TokenProvider,
        outbox: DeliveryPipeline,
        triggers: Optional[TriggerService] = None,
    ):
        self.identity = identity
        self.extractor = extractor
        self.wallets = wallets
        self.finance = finance
        self.tokens = tokens
        self.outbox = outbox
        self.triggers = triggers
        self._locks = KeyedLocks()

    async def handle_inbound(self, channel_id: str, text: str) -> None:
        phone = self.identity.normalize(channel_id)
        if not phone:
            logger.warning("Dropping message from unparseable channel id %r", channel_id)
            return

        async with self._locks.hold(phone):
            with span_attrs("conversation.inbound", phone=phone):
                await self._handle(phone, text)

    async def _handle(self, phone: str, text: str) -> None:
        logger.info("Processing message from %s: %s", phone, text[:120])

        mapping = self.identity.resolve(phone)
        if mapping is None:
            await self._reply(phone, SYSTEM_USER, replies.UNVERIFIED_NUMBER)
            return
        user_id = mapping.user_id

        # a pending wallet choice swallows whatever the user sends next
        if self.wallets.has_pending(phone):
            await self._resume_selection(phone, user_id, text)
            return

        result = await self.extractor.try_extract(text)
        if isinstance(result, ExtractionError):
            logger.warning("Extraction failed for %s: %s (%s)", phone, result.code, result.message)
            await self._reply(phone, user_id, replies.COULD_NOT_UNDERSTAND)
            return
        draft = result

        auth_token = await self.tokens.get_token(user_id)
        if not auth_token:
            await self._reply(phone, user_id, replies.RELOGIN_REQUIRED)
            return

        try:
            decision = await self.wallets.decide(auth_token, user_id, draft, phone)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Wallet lookup failed for user %s: %s", user_id, e)
            await self._reply(phone, user_id, replies.transaction_failed("Failed to fetch wallets"))
            return

        if decision.status == ResolutionStatus.CANNOT_PROCEED:
            await self._reply(phone, user_id, replies.NO_WALLET)
        elif decision.status == ResolutionStatus.NEEDS_CHOICE:
            await self._reply(phone, user_id, format_wallet_list(decision.options))
        else:
            await self._create_and_confirm(phone, user_id, auth_token, draft, decision.wallet_id)

    async def _resume_selection(self, phone: str, user_id: str, text: str) -> None:
        decision = await self.wallets.resume(phone, text)

        if decision.status != ResolutionStatus.RESOLVED:
            if decision.reason == NO_PENDING_SELECTION:
                await self._reply(phone, user_id, replies.NO_PENDING_TRANSACTION)
            else:
                await self._reply(phone, user_id, replies.INVALID_WALLET_SELECTION)
            return

        selection = decision.selection
        await self._create_and_confirm(phone, selection.user_id, selection.auth_token, selection.draft, decision.wallet_id)

    async def _create_and_confirm(
        self,
        phone: str,
        user_id: str,
        auth_token: str,
        draft: TransactionDraft,
        wallet_id: str,
    ) -> None:
        category_id = await self.finance.find_category_id(auth_token, draft.category)
        result = await self.finance.create_transaction(auth_token, draft, wallet_id, category_id)

        if not result.success:
            await self._reply(phone, user_id, replies.transaction_failed(result.error or "Unknown error"))
            return

        await self._reply(phone, user_id, replies.transaction_created(draft))

        if self.triggers is not None:
            await self.triggers.execute(EventType.TRANSACTION_CREATED, {
                "userId": user_id,
                "phoneNumber": phone,
                "transactionId": result.transaction_id,
                "walletId": wallet_id,
                "categoryId": category_id,
                "amount": draft.amount,
                "transactionType": draft.kind.value,
                "description": draft.description,
                "category": draft.category or "",
                "date": draft.occurred_on.isoformat(),
            })

    async def _reply(self, phone: str, user_id: str, body: str) -> None:
        try:
            await self.outbox.enqueue(phone, body, user_id)
        except Exception:
            logger.exception("Could not queue reply to %s", phone)
