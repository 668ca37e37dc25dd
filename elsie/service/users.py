from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from elsie.logging import get_logger
from elsie.service.errors import ConflictError, NotFoundError, ServerError
from elsie.storage.errors import ConstraintViolation
from elsie.storage.models import RefreshTokenRecord, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def create_user(self, name: str, email: str, password_hash: str) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def soft_delete_user(self, user_id: str) -> bool: ...

    def save_refresh_token(self, record: RefreshTokenRecord) -> None: ...

    def get_refresh_token(self, jti: str) -> Optional[RefreshTokenRecord]: ...

    def revoke_refresh_token(self, jti: str) -> bool: ...

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int: ...

    def verify_connection(self) -> None: ...


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserDirectory:
    """Lookup and creation of user records over a ``UserStore``.

    Missing users raise ``NotFoundError``; uniqueness violations become
    ``ConflictError`` and any other store failure becomes ``ServerError``.
    """

    def __init__(self, store: UserStore) -> None:
        self.store = store

    def find_by_id(self, user_id: str) -> User:
        try:
            user = self.store.get_user(user_id)
        except Exception as exc:
            logger.error("user_lookup_failed", user_id=user_id, error=str(exc))
            raise ServerError("internal server error") from exc
        if not user:
            raise NotFoundError("user not found")
        return user

    def find_by_email(self, email: str) -> User:
        try:
            user = self.store.get_user_by_email(normalize_email(email))
        except Exception as exc:
            logger.error("user_lookup_failed", error=str(exc))
            raise ServerError("internal server error") from exc
        if not user:
            raise NotFoundError("user not found")
        return user

    def create(self, name: str, email: str, password_hash: str) -> User:
        try:
            return self.store.create_user(
                name=name, email=normalize_email(email), password_hash=password_hash
            )
        except ConstraintViolation as exc:
            raise ConflictError("user already exists", field=exc.field or "email") from exc
        except Exception as exc:
            logger.error("user_create_failed", error=str(exc))
            raise ServerError("internal server error") from exc
