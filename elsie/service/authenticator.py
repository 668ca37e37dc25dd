from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from elsie.logging import get_logger
from elsie.service.errors import NotFoundError
from elsie.service.tokens import TokenCodec
from elsie.service.user_cache import UserCache
from elsie.service.users import UserDirectory
from elsie.storage.models import User

logger = get_logger(__name__)


@dataclass
class AuthContext:
    user_id: str
    email: str
    user: User


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class RequestAuthenticator:
    """Resolve the caller of a request from its ``Authorization`` header.

    Unauthenticated requests yield ``None``; rejecting them is left to the
    route dependencies.
    """

    def __init__(self, codec: TokenCodec, cache: UserCache, directory: UserDirectory) -> None:
        self.codec = codec
        self.cache = cache
        self.directory = directory

    async def authenticate(self, authorization: Optional[str]) -> Optional[AuthContext]:
        token = extract_bearer(authorization)
        if not token:
            return None
        claims = self.codec.verify_access_token(token)
        if not claims:
            return None
        user = self.cache.get(claims.user_id)
        if user is None:
            try:
                user = self.directory.find_by_id(claims.user_id)
            except NotFoundError:
                logger.info("auth_token_user_missing", user_id=claims.user_id)
                return None
            self.cache.set(user.id, user)
        return AuthContext(user_id=user.id, email=user.email, user=user)
