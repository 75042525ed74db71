"""Store of resumable conversations, keyed by conversation id.

Entries are evicted least-recently-used once ``max_entries`` is exceeded
and after ``idle_timeout_seconds`` without access. A conversation whose
lock is held (a round loop is running) is never evicted.

Rounds of one conversation are serialized through ``lock(conversation_id)``;
distinct ids use distinct locks and run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

import config
from .conversation import Conversation
from .logging import tagged

logger = logging.getLogger("bosun")


class _Entry:
    __slots__ = ("conversation", "last_active")

    def __init__(self, conversation: Conversation, now: float):
        self.conversation = conversation
        self.last_active = now


class ConversationStore:
    """LRU + idle-TTL map of conversation id to ``Conversation``."""

    def __init__(
        self,
        max_entries: Optional[int] = None,
        idle_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries or config.CONVERSATION_MAX_ENTRIES
        self.idle_timeout_seconds = (
            idle_timeout_seconds if idle_timeout_seconds is not None
            else config.CONVERSATION_IDLE_TIMEOUT_S
        )
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._mutex = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        with self._mutex:
            return len(self._entries)

    def __contains__(self, conversation_id: str) -> bool:
        with self._mutex:
            return conversation_id in self._entries

    def ids(self) -> list[str]:
        """Conversation ids, least recently used first."""
        with self._mutex:
            return list(self._entries.keys())

    # ---- Locking ----

    def lock(self, conversation_id: str) -> asyncio.Lock:
        """The lock serializing rounds of *conversation_id*."""
        with self._mutex:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[conversation_id] = lock
            return lock

    def _busy(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    # ---- Access ----

    def get(self, conversation_id: str) -> Optional[Conversation]:
        now = self._clock()
        with self._mutex:
            entry = self._entries.get(conversation_id)
            if entry is None:
                return None
            if self._expired(entry, now) and not self._busy(conversation_id):
                self._drop(conversation_id)
                return None
            entry.last_active = now
            self._entries.move_to_end(conversation_id)
            return entry.conversation

    def put(self, conversation: Conversation) -> None:
        """Insert or overwrite the entry for ``conversation.id``."""
        now = self._clock()
        with self._mutex:
            self._entries[conversation.id] = _Entry(conversation, now)
            self._entries.move_to_end(conversation.id)
            self._evict_overflow()

    def delete(self, conversation_id: str) -> bool:
        with self._mutex:
            if conversation_id not in self._entries:
                return False
            self._drop(conversation_id)
            return True

    # ---- Eviction ----

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self.idle_timeout_seconds > 0 and now - entry.last_active > self.idle_timeout_seconds

    def _drop(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)
        if not self._busy(conversation_id):
            self._locks.pop(conversation_id, None)

    def _evict_overflow(self) -> None:
        for cid in list(self._entries.keys()):
            if len(self._entries) <= self.max_entries:
                break
            if self._busy(cid):
                continue
            self._drop(cid)
            logger.debug(f"Evicted conversation {cid} (store full)",
                         extra=tagged("conversation_evicted"))

    def evict_expired(self) -> list[str]:
        """Drop every idle conversation past the timeout; return their ids."""
        now = self._clock()
        with self._mutex:
            expired = [
                cid for cid, entry in self._entries.items()
                if self._expired(entry, now) and not self._busy(cid)
            ]
            for cid in expired:
                self._drop(cid)
        if expired:
            logger.debug(f"Evicted {len(expired)} idle conversation(s)",
                         extra=tagged("conversation_evicted"))
        return expired

    # ---- Idle cleanup ----

    async def start_cleanup_loop(self, interval_seconds: float = 60) -> None:
        """Start a background task that evicts idle conversations."""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval_seconds))

    async def stop_cleanup_loop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.evict_expired()
