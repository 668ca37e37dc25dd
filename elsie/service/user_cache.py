"""Process-local cache of recently authenticated users.

Entries expire ``ttl_seconds`` after insertion. Expired entries are dropped
lazily on ``get`` and in bulk by a background sweep so that users who stop
making requests do not linger in memory.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from elsie.logging import get_logger
from elsie.storage.models import User

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass
class CachedUser:
    user: User
    inserted_at: float


class UserCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        after_sweep: Optional[Callable[[], Any]] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self.clock = clock
        # extra housekeeping run after each periodic sweep (sync or async)
        self.after_sweep = after_sweep
        self._entries: Dict[str, CachedUser] = {}
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    def _expired(self, entry: CachedUser, now: float) -> bool:
        return now - entry.inserted_at >= self.ttl_seconds

    def set(self, user_id: str, user: User) -> None:
        with self._lock:
            self._entries[user_id] = CachedUser(user=user, inserted_at=self.clock())

    def get(self, user_id: str) -> Optional[User]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if self._expired(entry, now):
                del self._entries[user_id]
                return None
            return entry.user

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self.clock()
        with self._lock:
            stale = [uid for uid, entry in self._entries.items() if self._expired(entry, now)]
            for uid in stale:
                del self._entries[uid]
        if stale:
            logger.debug("user_cache_swept", removed=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._entries

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("user_cache_sweeper_started", interval=self.sweep_interval)

    async def stop(self) -> None:
        """Stop the periodic sweep task."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("user_cache_sweeper_stopped")

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
                if self.after_sweep is not None:
                    result = self.after_sweep()
                    if inspect.isawaitable(result):
                        await result
            except Exception as exc:
                logger.error("user_cache_sweep_failed", error=str(exc))
