"""Single-flight token refresh for the API client.

States:
    IDLE        no refresh running
    REFRESHING  one refresh request in flight; other callers await it
    RETRYING    new tokens stored; callers are replaying their request
    FAILED      refresh was rejected; the session has been cleared

``FAILED`` is left only by ``reset()``, which the client calls on login.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from elsie.api.schemas import TokenPairResponse
from elsie.client.session import ClientSession
from elsie.logging import get_logger

logger = get_logger(__name__)


class LoginRequiredError(Exception):
    """The session cannot be recovered; the user must log in again."""


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    RETRYING = "retrying"
    FAILED = "failed"


RefreshFn = Callable[[str], Awaitable[TokenPairResponse]]


class RefreshCoordinator:
    def __init__(self, session: ClientSession, refresh_fn: RefreshFn) -> None:
        self.session = session
        self._refresh_fn = refresh_fn
        self.state = RefreshState.IDLE
        self._inflight: Optional[asyncio.Future] = None

    async def refresh(self) -> str:
        """Return a fresh access token, sharing any refresh already running.

        If the caller that owns the running refresh is cancelled, one of the
        waiting callers starts a new one.
        """
        while self._inflight is not None:
            inflight = self._inflight
            try:
                return await asyncio.shield(inflight)
            except asyncio.CancelledError:
                if not inflight.cancelled():
                    raise
        if self.state is RefreshState.FAILED:
            raise LoginRequiredError("session expired")
        refresh_token = self.session.refresh_token
        if not refresh_token:
            self._fail()
            raise LoginRequiredError("no refresh token")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight = future
        self.state = RefreshState.REFRESHING
        try:
            pair = await self._refresh_fn(refresh_token)
            self.session.update_token(pair)
        except Exception as exc:
            logger.warning("client_refresh_failed", error=str(exc))
            error = LoginRequiredError("session expired")
            future.set_exception(error)
            # mark retrieved so an unawaited failure is not reported by asyncio
            future.exception()
            self._fail()
            raise error from exc
        except BaseException:
            self.state = RefreshState.IDLE
            future.cancel()
            raise
        else:
            self.state = RefreshState.RETRYING
            future.set_result(pair.access_token)
        finally:
            self._inflight = None
        logger.info("client_refresh_succeeded")
        return pair.access_token

    def retry_finished(self) -> None:
        if self.state is RefreshState.RETRYING:
            self.state = RefreshState.IDLE

    def reset(self) -> None:
        self.state = RefreshState.IDLE

    def _fail(self) -> None:
        self.state = RefreshState.FAILED
        self.session.logout()
