from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from elsie.logging import get_logger
from elsie.storage.errors import ConstraintViolation
from elsie.storage.models import RefreshTokenRecord, User, utcnow


class MemoryStore:
    """In-memory user store persisted to a JSON file for local development."""

    def __init__(self, fs_root: str = "/tmp/elsie") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshTokenRecord] = {}
        # RLock so helpers can re-enter while a public method holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    # users
    def create_user(self, name: str, email: str, password_hash: str) -> User:
        with self._data_lock:
            if any(
                existing.email == email and not existing.is_deleted
                for existing in self.users.values()
            ):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(name=name, email=email, password_hash=password_hash)
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if user is None or user.is_deleted:
                return None
            return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.email == email and not u.is_deleted
                ),
                None,
            )

    def soft_delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.is_deleted:
                return False
            now = utcnow()
            user.deleted_at = now
            user.updated_at = now
            self._persist_state()
            return True

    # refresh tokens
    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        with self._data_lock:
            if record.jti in self.refresh_tokens:
                raise ConstraintViolation("refresh token already exists", {"field": "jti"})
            self.refresh_tokens[record.jti] = record
            self._persist_state()

    def get_refresh_token(self, jti: str) -> Optional[RefreshTokenRecord]:
        with self._data_lock:
            return self.refresh_tokens.get(jti)

    def revoke_refresh_token(self, jti: str) -> bool:
        """Mark a refresh token revoked; False when unknown or already revoked."""
        with self._data_lock:
            record = self.refresh_tokens.get(jti)
            if not record or record.revoked_at is not None:
                return False
            record.revoked_at = utcnow()
            self._persist_state()
            return True

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        cutoff = now or utcnow()
        with self._data_lock:
            expired = [
                jti for jti, rec in self.refresh_tokens.items() if rec.expires_at <= cutoff
            ]
            for jti in expired:
                self.refresh_tokens.pop(jti, None)
            if expired:
                self._persist_state()
            return len(expired)

    def verify_connection(self) -> None:
        self._state_path()

    # persistence
    def _serialize_user(self, user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "password_hash": user.password_hash,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
            "deleted_at": self._serialize_datetime(user.deleted_at),
        }

    def _deserialize_user(self, data: Dict[str, Any]) -> User:
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            updated_at=self._deserialize_datetime(data.get("updated_at")),
            deleted_at=self._deserialize_datetime(data.get("deleted_at")),
        )

    def _serialize_refresh_token(self, record: RefreshTokenRecord) -> Dict[str, Any]:
        return {
            "jti": record.jti,
            "user_id": record.user_id,
            "expires_at": self._serialize_datetime(record.expires_at),
            "created_at": self._serialize_datetime(record.created_at),
            "revoked_at": self._serialize_datetime(record.revoked_at),
        }

    def _deserialize_refresh_token(self, data: Dict[str, Any]) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            jti=data["jti"],
            user_id=data["user_id"],
            expires_at=self._deserialize_datetime(data["expires_at"]),
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            revoked_at=self._deserialize_datetime(data.get("revoked_at")),
        )

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "refresh_tokens": [
                self._serialize_refresh_token(r) for r in self.refresh_tokens.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        # read directly instead of exists() to avoid a TOCTOU race
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as exc:
            self.logger.warning("memory_store_state_corrupt", path=str(path), error=str(exc))
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.refresh_tokens = {
            r["jti"]: self._deserialize_refresh_token(r)
            for r in data.get("refresh_tokens", [])
        }
        return True
