from __future__ import annotations

import asyncio
import threading
from typing import Optional

from elsie.config import get_settings, reset_settings_cache
from elsie.logging import get_logger
from elsie.service.auth import AuthService
from elsie.service.authenticator import RequestAuthenticator
from elsie.service.health import HealthService
from elsie.service.passwords import PasswordHasher
from elsie.service.tokens import TokenCodec
from elsie.service.user_cache import UserCache
from elsie.service.users import UserDirectory
from elsie.storage.memory import MemoryStore
from elsie.storage.postgres import PostgresStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.dsn)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.tokens = TokenCodec(
            self.settings.jwt_access_token_secret,
            self.settings.jwt_refresh_token_secret,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )
        self.passwords = PasswordHasher()
        self.users = UserDirectory(self.store)
        self.user_cache = UserCache(
            ttl_seconds=self.settings.user_cache_ttl_seconds,
            sweep_interval=self.settings.user_cache_sweep_seconds,
            after_sweep=self._purge_refresh_tokens,
        )
        self.auth = AuthService(
            self.users, self.store, self.passwords, self.tokens, self.user_cache
        )
        self.authenticator = RequestAuthenticator(self.tokens, self.user_cache, self.users)
        self.health = HealthService(self.store)
        logger.info("runtime_init_completed")

    async def _purge_refresh_tokens(self) -> None:
        removed = await asyncio.to_thread(self.store.purge_expired_refresh_tokens)
        if removed:
            logger.info("refresh_tokens_purged", removed=removed)

    async def start(self) -> None:
        await self.user_cache.start()

    async def stop(self) -> None:
        await self.user_cache.stop()

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
