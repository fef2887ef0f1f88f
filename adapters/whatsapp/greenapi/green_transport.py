# adapters/whatsapp/greenapi/green_transport.py
import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

from whatsapp_api_client_python import API

from adapters.whatsapp.transport import ChatTransport, EventCallback, TransportUnavailableError
from models.session import ConnectionUpdate, DisconnectReason, InboundMessage, PairingCode, PairingFormat

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "instance.json"

TEXT_TYPES = {"textMessage", "extendedTextMessage", "quotedMessage"}

STATE_AUTHORIZED = "authorized"
STATE_NOT_AUTHORIZED = "notAuthorized"
STATE_STARTING = "starting"


def _first_present_text(*vals) -> Optional[str]:
    for v in vals:
        if isinstance(v, str) and v.strip():
            return v
    return None


def parse_notification(body: Dict[str, Any]) -> Optional[InboundMessage]:
    """incoming/outgoing message webhook body -> InboundMessage (text may be None for non-text)."""
    twh = (body.get("typeWebhook") or "")
    if twh not in ("incomingMessageReceived", "outgoingMessageReceived", "outgoingAPIMessageReceived"):
        return None

    sender_data = body.get("senderData") or {}
    chat_id = sender_data.get("chatId")
    if not chat_id:
        return None

    md = body.get("messageData") or {}
    t = (md.get("typeMessage") or "").strip()
    text = None
    if t in TEXT_TYPES:
        text = _first_present_text(
            (md.get("textMessageData") or {}).get("textMessage"),
            (md.get("extendedTextMessageData") or {}).get("text"),
        )

    return InboundMessage(
        chat_id=chat_id,
        text=text,
        message_id=body.get("idMessage"),
        from_me=twh != "incomingMessageReceived",
        sender_name=sender_data.get("senderName") or None,
    )


def _data(resp) -> Dict[str, Any]:
    data = getattr(resp, "data", None)
    return data if isinstance(data, dict) else {}


class GreenApiTransport(ChatTransport):
    """
    WhatsApp through the Green API gateway. The gateway holds the actual device
    session; we poll its state, fetch QR codes while it is unpaired and drain the
    notification queue while it is authorized.
    """

    def __init__(
        self,
        id_instance: Optional[str] = None,
        api_token_instance: Optional[str] = None,
        host: str = "https://api.green-api.com",
        poll_interval: float = 2.0,
    ):
        self.id_instance = id_instance
        self.api_token_instance = api_token_instance
        self.host = host
        self.poll_interval = poll_interval
        self.green: Optional[API.GreenAPI] = None
        self._task: Optional[asyncio.Task] = None
        self._on_event: Optional[EventCallback] = None
        self._state: Optional[str] = None
        self._last_qr: Optional[str] = None

    # ---------- credentials ----------

    def _load_credentials(self, auth_dir: str) -> Tuple[str, str]:
        path = os.path.join(auth_dir, CREDENTIALS_FILE)
        if self.id_instance and self.api_token_instance:
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"idInstance": self.id_instance, "apiTokenInstance": self.api_token_instance}, f)
            return self.id_instance, self.api_token_instance

        if os.path.exists(path):
            with open(path, encoding="utf-8") as f:
                creds = json.load(f)
            if creds.get("idInstance") and creds.get("apiTokenInstance"):
                return str(creds["idInstance"]), creds["apiTokenInstance"]

        raise TransportUnavailableError(
            f"No Green API instance credentials (set GREEN_API_ID_INSTANCE/GREEN_API_TOKEN_INSTANCE or {path})"
        )

    # ---------- ChatTransport ----------

    async def negotiate_version(self) -> Optional[str]:
        # the gateway speaks one REST dialect; nothing to negotiate
        return None

    async def open(self, auth_dir: str, on_event: EventCallback) -> None:
        id_instance, token = self._load_credentials(auth_dir)
        self.green = API.GreenAPI(id_instance, token, host=self.host)
        self._on_event = on_event
        self._state = None
        self._last_qr = None
        await on_event(ConnectionUpdate(connection="connecting"))
        self._task = asyncio.create_task(self._poll_loop())

    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        if self.green is None:
            raise TransportUnavailableError("Green API session not open")
        resp = await asyncio.to_thread(self.green.sending.sendMessage, chat_id, text)
        if getattr(resp, "code", None) != 200:
            raise TransportUnavailableError(f"sendMessage failed: {getattr(resp, 'code', None)} {getattr(resp, 'error', '')}")
        msg_id = _data(resp).get("idMessage")
        if not msg_id:
            raise ValueError(f"Missing idMessage in response: {_data(resp)}")
        return msg_id

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.green = None
        self._state = None
        self._last_qr = None

    # ---------- polling ----------

    async def _emit(self, event) -> None:
        if self._on_event is not None:
            await self._on_event(event)

    async def _poll_loop(self) -> None:
        while self.green is not None:
            try:
                resp = await asyncio.to_thread(self.green.account.getStateInstance)
                if getattr(resp, "code", None) != 200:
                    raise ConnectionError(f"getStateInstance returned {getattr(resp, 'code', None)}")
                state = _data(resp).get("stateInstance")
                done = await self._on_state(state)
                if done:
                    return
                if state == STATE_AUTHORIZED:
                    if await self._drain_notifications():
                        return
                    continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Green API poll failed: %s", e)
                await self._emit(ConnectionUpdate(connection="close", reason=DisconnectReason.CONNECTION_LOST, detail=str(e)))
                return
            await asyncio.sleep(self.poll_interval)

    async def _on_state(self, state: Optional[str]) -> bool:
        """Translate gateway state into connection updates. True ends the poll loop."""
        previous, self._state = self._state, state

        if state == STATE_AUTHORIZED:
            self._last_qr = None
            if previous != STATE_AUTHORIZED:
                await self._emit(ConnectionUpdate(connection="open"))
            return False

        if state == STATE_NOT_AUTHORIZED:
            if previous == STATE_AUTHORIZED:
                await self._emit(ConnectionUpdate(connection="close", reason=DisconnectReason.LOGGED_OUT))
                return True
            qr = await asyncio.to_thread(self.green.account.qr)
            qr_data = _data(qr)
            message = qr_data.get("message")
            # the gateway returns the same code until it rotates
            if qr_data.get("type") == "qrCode" and message and message != self._last_qr:
                self._last_qr = message
                await self._emit(ConnectionUpdate(pairing=PairingCode(message, PairingFormat.PNG_BASE64)))
            return False

        if state == STATE_STARTING and previous != STATE_STARTING:
            await self._emit(ConnectionUpdate(connection="connecting"))
            return False

        if state not in (STATE_STARTING,) and previous == STATE_AUTHORIZED:
            await self._emit(ConnectionUpdate(connection="close", reason=DisconnectReason.CONNECTION_LOST, detail=state))
            return True
        return False

    async def _drain_notifications(self) -> bool:
        """Handle queued notifications. True when one of them ended the session."""
        while self.green is not None:
            resp = await asyncio.to_thread(self.green.receiving.receiveNotification)
            data = _data(resp)
            receipt_id = data.get("receiptId")
            if not receipt_id:
                await asyncio.sleep(self.poll_interval)
                return False
            body = data.get("body") or {}
            try:
                if body.get("typeWebhook") == "stateInstanceChanged":
                    if await self._on_state(body.get("stateInstance")):
                        return True
                else:
                    msg = parse_notification(body)
                    if msg is not None:
                        await self._emit(msg)
            finally:
                await asyncio.to_thread(self.green.receiving.deleteNotification, receipt_id)
        return False
