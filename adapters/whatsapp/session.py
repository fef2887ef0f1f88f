# adapters/whatsapp/session.py
import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

from adapters.whatsapp.pairing import render_ascii
from adapters.whatsapp.transport import ChatTransport, TransportEvent, TransportUnavailableError
from models.session import (
    ConnectionState,
    ConnectionUpdate,
    DisconnectReason,
    InboundMessage,
    PairingCode,
    SessionStatus,
)
from shared.phone import DEFAULT_COUNTRY_CODE, to_chat_id

logger = logging.getLogger(__name__)

InboundHandler = Callable[[str, str], Awaitable[None]]


class ChatSessionManager:
    """
    Owns the one chat connection of this process.

    Disconnected -> Connecting -> Connected -> Disconnected. Drops other than a
    remote logout are retried after `reconnect_delay`, at most `max_reconnects`
    times in a row; a successful open resets the counter. Pairing codes live only
    until the next connecting/open/close transition.
    """

    def __init__(
        self,
        transport: ChatTransport,
        auth_dir: str,
        chat_suffix: str = "@c.us",
        country_code: str = DEFAULT_COUNTRY_CODE,
        reconnect_delay: float = 5.0,
        max_reconnects: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.auth_dir = auth_dir
        self.chat_suffix = chat_suffix
        self.country_code = country_code
        self.reconnect_delay = reconnect_delay
        self.max_reconnects = max_reconnects
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self._pairing: Optional[PairingCode] = None
        self._inbound_handler: Optional[InboundHandler] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._opened = False
        self._closing = False

    def on_inbound(self, handler: InboundHandler) -> None:
        self._inbound_handler = handler

    # ---------- lifecycle ----------

    async def initialize(self) -> None:
        os.makedirs(self.auth_dir, exist_ok=True)
        await self.connect()

    async def connect(self) -> None:
        self.state = ConnectionState.CONNECTING
        self._pairing = None
        try:
            version = await self.transport.negotiate_version()
            if version:
                logger.info("Using WhatsApp protocol version %s", version)
            await self.transport.open(self.auth_dir, self._on_event)
            self._opened = True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to open WhatsApp session: %s", e)
            await self.handle_connection_update(
                ConnectionUpdate(connection="close", reason=DisconnectReason.CONNECTION_LOST, detail=str(e))
            )

    async def reconnect(self) -> None:
        logger.info("Manual reconnect requested")
        self.reconnect_attempts = 0
        await self.close()
        await self.connect()

    async def close(self) -> None:
        self._closing = True
        try:
            task, self._reconnect_task = self._reconnect_task, None
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
            if self._opened:
                self._opened = False
                await self.transport.close()
        finally:
            self._closing = False
        self.state = ConnectionState.DISCONNECTED
        self._pairing = None

    # ---------- events ----------

    async def _on_event(self, event: TransportEvent) -> None:
        if isinstance(event, ConnectionUpdate):
            await self.handle_connection_update(event)
        elif isinstance(event, InboundMessage):
            await self._dispatch(event)

    async def handle_connection_update(self, update: ConnectionUpdate) -> None:
        if update.connection == "connecting":
            self.state = ConnectionState.CONNECTING
            self._pairing = None
        elif update.connection == "open":
            self.state = ConnectionState.CONNECTED
            self._pairing = None
            self.reconnect_attempts = 0
            logger.info("WhatsApp connected successfully")
        elif update.connection == "close":
            self.state = ConnectionState.DISCONNECTED
            self._pairing = None
            if self._closing:
                return
            if update.reason == DisconnectReason.LOGGED_OUT:
                logger.error("WhatsApp logged out by the remote side. Re-pair the device to continue.")
                return
            logger.warning("WhatsApp connection closed (%s: %s)", update.reason, update.detail)
            self._schedule_reconnect()

        if update.pairing is not None:
            self._pairing = update.pairing
            logger.info("Pairing code received. Scan it with WhatsApp:\n%s", render_ascii(update.pairing))

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self.max_reconnects:
            logger.critical(
                "Max reconnection attempts (%d) reached. Manual intervention required.", self.max_reconnects
            )
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self.reconnect_attempts += 1
        logger.info(
            "Reconnecting in %.0fs (attempt %d/%d)", self.reconnect_delay, self.reconnect_attempts, self.max_reconnects
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await self._sleep(self.reconnect_delay)
        self._reconnect_task = None
        if self._opened:
            self._opened = False
            try:
                await self.transport.close()
            except Exception as e:
                logger.warning("Closing stale transport failed: %s", e)
        await self.connect()

    async def _dispatch(self, msg: InboundMessage) -> None:
        text = (msg.text or "").strip()
        if msg.from_me or msg.is_group or not text:
            logger.debug("Dropping inbound event from %s (self=%s group=%s text=%s)",
                         msg.chat_id, msg.from_me, msg.is_group, bool(text))
            return
        if self._inbound_handler is None:
            logger.warning("No inbound handler registered; dropping message from %s", msg.chat_id)
            return
        try:
            await self._inbound_handler(msg.chat_id, text)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Inbound handler failed for %s", msg.chat_id)

    # ---------- sending / status ----------

    async def send_message(self, recipient: str, text: str) -> bool:
        if self.state != ConnectionState.CONNECTED:
            raise TransportUnavailableError("WhatsApp is not connected")
        chat_id = to_chat_id(recipient, suffix=self.chat_suffix, country_code=self.country_code)
        await self.transport.send_text(chat_id, text)
        logger.info("Message sent to %s", chat_id)
        return True

    def get_status(self) -> SessionStatus:
        return SessionStatus(
            connected=self.state == ConnectionState.CONNECTED,
            state=self.state,
            has_pending_pairing=self._pairing is not None,
            reconnect_attempts=self.reconnect_attempts,
        )

    def get_pairing_code(self) -> Optional[PairingCode]:
        return self._pairing
