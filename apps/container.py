# apps/container.py
import logging
from dataclasses import dataclass
from typing import Optional

from adapters.backend.finance_api import FinanceApiClient
from adapters.whatsapp.session import ChatSessionManager
from adapters.whatsapp.transport import ChatTransport
from agent.orchestrator import ConversationOrchestrator
from agent.transaction_extractor import TransactionExtractor
from agent.wallet_resolution import WalletResolutionEngine
from db.base import get_db
from shared.auth_tokens import TokenProvider
from shared.config import Settings
from shared.delivery import DeliveryPipeline
from shared.identity import PhoneIdentityResolver
from shared.triggers import TriggerService
from store.delivery_store import DeliveryJobStore, FirestoreDeliveryJobStore, InMemoryDeliveryJobStore
from store.identity_store import FirestoreIdentityStore, IdentityStore, InMemoryIdentityStore
from store.pending_selection_store import InMemoryPendingSelectionStore
from store.template_store import (
    FirestoreTemplateStore,
    FirestoreTriggerStore,
    InMemoryTemplateStore,
    InMemoryTriggerStore,
    TemplateStore,
    TriggerStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    identity_store: IdentityStore
    job_store: DeliveryJobStore
    templates: TemplateStore
    trigger_store: TriggerStore
    identity: PhoneIdentityResolver
    tokens: TokenProvider
    finance: FinanceApiClient
    extractor: TransactionExtractor
    wallets: WalletResolutionEngine
    session: ChatSessionManager
    outbox: DeliveryPipeline
    triggers: TriggerService
    orchestrator: ConversationOrchestrator


def _default_transport(settings: Settings) -> ChatTransport:
    from adapters.whatsapp.greenapi.green_transport import GreenApiTransport

    return GreenApiTransport(
        id_instance=settings.green_api_id_instance,
        api_token_instance=settings.green_api_token_instance,
        host=settings.green_api_url,
    )


def build_container(
    settings: Settings,
    transport: Optional[ChatTransport] = None,
    extractor: Optional[TransactionExtractor] = None,
    finance: Optional[FinanceApiClient] = None,
) -> Container:
    """Wire every component once. Tests pass their own transport/extractor/finance client."""
    if settings.store_backend == "memory":
        identity_store = InMemoryIdentityStore()
        job_store = InMemoryDeliveryJobStore()
        templates = InMemoryTemplateStore()
        trigger_store = InMemoryTriggerStore()
    else:
        db = get_db(settings.secrets_dir)
        identity_store = FirestoreIdentityStore(db)
        job_store = FirestoreDeliveryJobStore(db)
        templates = FirestoreTemplateStore(db)
        trigger_store = FirestoreTriggerStore(db)
    logger.info("Using %s stores", settings.store_backend)

    identity = PhoneIdentityResolver(
        identity_store,
        country_code=settings.default_country_code,
        code_ttl_seconds=settings.verification_code_ttl,
    )
    tokens = TokenProvider(secret=settings.jwt_secret, mint=settings.mint_user_tokens)
    finance = finance or FinanceApiClient(settings.backend_api_url)
    extractor = extractor or TransactionExtractor(
        api_key=settings.inference_api_key,
        base_url=settings.inference_api_url,
        model=settings.inference_model,
    )
    wallets = WalletResolutionEngine(
        finance,
        InMemoryPendingSelectionStore(),
        ttl_seconds=settings.pending_selection_ttl,
    )
    session = ChatSessionManager(
        transport or _default_transport(settings),
        auth_dir=settings.whatsapp_auth_path,
        chat_suffix=settings.whatsapp_chat_suffix,
        country_code=settings.default_country_code,
        reconnect_delay=settings.whatsapp_reconnect_delay,
        max_reconnects=settings.whatsapp_max_reconnects,
    )
    outbox = DeliveryPipeline(
        job_store,
        session.send_message,
        concurrency=settings.delivery_concurrency,
        rate_limit_per_minute=settings.rate_limit_per_minute,
        max_attempts=settings.delivery_max_attempts,
        backoff_seconds=settings.delivery_backoff_seconds,
        completed_retention_seconds=settings.completed_retention_seconds,
        completed_retention_count=settings.completed_retention_count,
        failed_retention_seconds=settings.failed_retention_seconds,
    )
    triggers = TriggerService(trigger_store, templates, outbox)
    orchestrator = ConversationOrchestrator(identity, extractor, wallets, finance, tokens, outbox, triggers)
    session.on_inbound(orchestrator.handle_inbound)

    return Container(
        settings=settings,
        identity_store=identity_store,
        job_store=job_store,
        templates=templates,
        trigger_store=trigger_store,
        identity=identity,
        tokens=tokens,
        finance=finance,
        extractor=extractor,
        wallets=wallets,
        session=session,
        outbox=outbox,
        triggers=triggers,
        orchestrator=orchestrator,
    )
