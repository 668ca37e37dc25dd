from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def new(cls, name: str, email: str, password_hash: str) -> "User":
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            password_hash=password_hash,
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class RefreshTokenRecord:
    """Server-side record of an issued refresh token, keyed by its ``jti``."""

    jti: str
    user_id: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    revoked_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now
