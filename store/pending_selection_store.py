from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from models.wallet import PendingWalletSelection
from shared import time

logger = logging.getLogger(__name__)


class PendingSelectionStore(ABC):
    """Short-lived per-conversation wallet choices, keyed by channel identity."""

    @abstractmethod
    def get(self, channel_id: str) -> Optional[PendingWalletSelection]:
        """Return the live entry, or None. Expired entries are purged here."""
        pass

    @abstractmethod
    def put(self, selection: PendingWalletSelection, ttl_seconds: float) -> None:
        """Store (overwriting any existing entry for the channel) with an absolute TTL."""
        pass

    @abstractmethod
    def delete(self, channel_id: str) -> bool:
        pass


class InMemoryPendingSelectionStore(PendingSelectionStore):
    def __init__(self):
        self._entries: Dict[str, PendingWalletSelection] = {}
        self._ttls: Dict[str, float] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def get(self, channel_id: str) -> Optional[PendingWalletSelection]:
        entry = self._entries.get(channel_id)
        if entry is None:
            return None
        if time.seconds_since(entry.created_at) > self._ttls.get(channel_id, 0):
            logger.info("Pending selection for %s expired", channel_id)
            self.delete(channel_id)
            return None
        return entry

    def put(self, selection: PendingWalletSelection, ttl_seconds: float) -> None:
        channel_id = selection.channel_id
        self._cancel_timer(channel_id)
        self._entries[channel_id] = selection
        self._ttls[channel_id] = ttl_seconds

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop (sync caller): lazy expiry on read still applies
            return
        self._timers[channel_id] = loop.call_later(ttl_seconds, self._expire, channel_id, selection.created_at)

    def delete(self, channel_id: str) -> bool:
        self._cancel_timer(channel_id)
        self._ttls.pop(channel_id, None)
        return self._entries.pop(channel_id, None) is not None

    def _expire(self, channel_id: str, created_at) -> None:
        entry = self._entries.get(channel_id)
        # only drop the entry this timer was scheduled for
        if entry is not None and entry.created_at == created_at:
            self._timers.pop(channel_id, None)
            self._ttls.pop(channel_id, None)
            self._entries.pop(channel_id, None)
            logger.info("Pending selection for %s timed out", channel_id)

    def _cancel_timer(self, channel_id: str) -> None:
        handle = self._timers.pop(channel_id, None)
        if handle is not None:
            handle.cancel()

    def __len__(self) -> int:
        return len(self._entries)
