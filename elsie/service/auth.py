from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from elsie.logging import get_logger
from elsie.service.errors import AuthenticationError, ServerError
from elsie.service.passwords import PasswordHasher
from elsie.service.tokens import TokenClaims, TokenCodec, TokenPair
from elsie.service.user_cache import UserCache
from elsie.service.users import UserDirectory, UserStore
from elsie.storage.models import RefreshTokenRecord, User

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthResult:
    tokens: TokenPair
    user: User


class AuthService:
    """Registration, login, token refresh and logout.

    Refresh tokens are single use: every issued refresh ``jti`` is recorded
    in the store and revoked once it has been exchanged for a new pair.
    """

    def __init__(
        self,
        directory: UserDirectory,
        store: UserStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        cache: UserCache,
    ) -> None:
        self.directory = directory
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.cache = cache
        self.logger = logger

    def _now(self) -> datetime:
        # follow the codec clock so token and record expiry agree
        return datetime.fromtimestamp(self.codec.clock(), tz=timezone.utc)

    def _issue(self, user_id: str, email: str) -> tuple[TokenPair, str]:
        jti = str(uuid.uuid4())
        try:
            pair = self.codec.issue_pair(TokenClaims(user_id, email, jti=jti))
        except Exception as exc:
            self.logger.error("auth_token_sign_failed", user_id=user_id, error=str(exc))
            raise ServerError("internal server error") from exc
        issued_at = self._now()
        record = RefreshTokenRecord(
            jti=jti,
            user_id=user_id,
            expires_at=datetime.fromtimestamp(
                issued_at.timestamp() + self.codec.refresh_ttl_seconds, tz=timezone.utc
            ),
            created_at=issued_at,
        )
        try:
            self.store.save_refresh_token(record)
        except Exception as exc:
            self.logger.error("auth_refresh_token_save_failed", user_id=user_id, error=str(exc))
            raise ServerError("internal server error") from exc
        return pair, jti

    def _issue_tokens(self, user_id: str, email: str) -> TokenPair:
        return self._issue(user_id, email)[0]

    def _revoke(self, jti: str) -> bool:
        try:
            return self.store.revoke_refresh_token(jti)
        except Exception as exc:
            self.logger.error("auth_refresh_token_revoke_failed", error=str(exc))
            raise ServerError("internal server error") from exc

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        password_hash = await self.hasher.hash_async(password)
        # ConflictError propagates before any token is issued
        user = self.directory.create(name=name, email=email, password_hash=password_hash)
        tokens = self._issue_tokens(user.id, user.email)
        self.cache.set(user.id, user)
        self.logger.info("auth_registered", user_id=user.id)
        return AuthResult(tokens=tokens, user=user)

    async def login(self, email: str, password: str) -> AuthResult:
        user = self.directory.find_by_email(email)
        if not await self.hasher.verify_async(password, user.password_hash):
            self.logger.warning("auth_login_invalid_password", user_id=user.id)
            raise AuthenticationError("invalid credentials")
        tokens = self._issue_tokens(user.id, user.email)
        self.cache.set(user.id, user)
        self.logger.info("auth_login", user_id=user.id)
        return AuthResult(tokens=tokens, user=user)

    async def refresh(self, refresh_token: str) -> TokenPair:
        claims = self.codec.verify_refresh_token(refresh_token)
        if not claims or not claims.jti:
            self.logger.warning("auth_refresh_invalid_token")
            raise AuthenticationError("session expired")
        record = self.store.get_refresh_token(claims.jti)
        if not record or record.user_id != claims.user_id:
            self.logger.warning("auth_refresh_unknown_token", user_id=claims.user_id)
            raise AuthenticationError("session expired")
        if record.revoked_at is not None:
            self.logger.warning("auth_refresh_token_reused", user_id=claims.user_id)
            raise AuthenticationError("session expired")
        if not record.is_active(self._now()):
            raise AuthenticationError("session expired")
        user = self.directory.find_by_id(claims.user_id)
        # the replacement is stored before the old jti is revoked, so a failed
        # save leaves the presented token usable
        tokens, new_jti = self._issue(user.id, user.email)
        # a concurrent refresh may have consumed the token between read and revoke
        if not self._revoke(claims.jti):
            self._revoke(new_jti)
            self.logger.warning("auth_refresh_token_reused", user_id=user.id)
            raise AuthenticationError("session expired")
        self.logger.info("auth_refreshed", user_id=user.id)
        return tokens

    async def logout(self, refresh_token: str) -> None:
        claims = self.codec.verify_refresh_token(refresh_token)
        if not claims:
            return
        if claims.jti:
            self._revoke(claims.jti)
        self.cache.invalidate(claims.user_id)
        self.logger.info("auth_logout", user_id=claims.user_id)

    async def get_me(self, user_id: str) -> User:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        user = self.directory.find_by_id(user_id)
        self.cache.set(user.id, user)
        return user
