from __future__ import annotations

from typing import Optional

from elsie.api.schemas import AuthResponse, TokenPairResponse, UserResponse
from elsie.client.config import ClientConfig
from elsie.client.storage import TokenStorage
from elsie.logging import get_logger

logger = get_logger(__name__)


class ClientSession:
    """Client-side auth state.

    Tokens are written through to ``TokenStorage`` on every change and
    hydrated from it on construction. The user is kept in memory only.
    """

    def __init__(self, storage: TokenStorage, config: Optional[ClientConfig] = None) -> None:
        self.storage = storage
        self.config = config or ClientConfig()
        self.access_token: Optional[str] = storage.get(self.config.access_token_key)
        self.refresh_token: Optional[str] = storage.get(self.config.refresh_token_key)
        self.user: Optional[UserResponse] = None
        self.is_loading = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def _store(self, key: str, value: Optional[str]) -> None:
        if value:
            self.storage.set(key, value)
        else:
            self.storage.remove(key)

    def login(self, result: AuthResponse) -> None:
        self.update_token(result)
        self.user = result.user
        logger.info("client_session_login", user_id=result.user.id)

    def logout(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self._store(self.config.access_token_key, None)
        self._store(self.config.refresh_token_key, None)

    def update_token(self, pair: TokenPairResponse) -> None:
        self.access_token = pair.access_token
        self.refresh_token = pair.refresh_token
        self._store(self.config.access_token_key, pair.access_token)
        self._store(self.config.refresh_token_key, pair.refresh_token)

    def update_user(self, user: UserResponse) -> None:
        self.user = user

    def update_loading(self, is_loading: bool) -> None:
        self.is_loading = is_loading
