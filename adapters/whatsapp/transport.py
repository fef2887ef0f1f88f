# adapters/whatsapp/transport.py

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from models.session import ConnectionUpdate, InboundMessage

TransportEvent = Union[ConnectionUpdate, InboundMessage]
EventCallback = Callable[[TransportEvent], Awaitable[None]]


class TransportUnavailableError(Exception):
    """The chat session cannot carry a message right now (not connected, gateway refused)."""


class ChatTransport(ABC):
    """
    The chat network connection, seen as a black box.
    After open() the transport reports everything through `on_event`:
    ConnectionUpdate for state changes / pairing codes, InboundMessage for messages.
    """

    @abstractmethod
    async def negotiate_version(self) -> Optional[str]:
        """Protocol/gateway version the session will speak, if the network exposes one."""
        pass

    @abstractmethod
    async def open(self, auth_dir: str, on_event: EventCallback) -> None:
        """Load or create credential material under `auth_dir` and start the session."""
        pass

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        """Send a text message. Returns the network's message id, raises on rejection."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
