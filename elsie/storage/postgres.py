from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from elsie.logging import get_logger
from elsie.storage.errors import ConstraintViolation, StorageUnavailable
from elsie.storage.models import RefreshTokenRecord, User, utcnow


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ,
        deleted_at TIMESTAMPTZ
    )
    """,
    # email is unique among live accounts only
    """
    CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_live_idx
        ON app_user (email) WHERE deleted_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        jti TEXT PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user (id) ON DELETE CASCADE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        revoked_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS refresh_token_expires_idx ON refresh_token (expires_at)",
)


class PostgresStore:
    """Postgres-backed user and refresh token store."""

    def __init__(self, dsn: str, *, pool: Any = None) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = pool or ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: dict) -> User:
        return User(
            id=str(row["id"]),
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
        )

    @staticmethod
    def _refresh_token_from_row(row: dict) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            jti=row["jti"],
            user_id=str(row["user_id"]),
            expires_at=row["expires_at"],
            created_at=row.get("created_at") or utcnow(),
            revoked_at=row.get("revoked_at"),
        )

    # users
    def create_user(self, name: str, email: str, password_hash: str) -> User:
        user = User.new(name=name, email=email, password_hash=password_hash)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, name, email, password_hash, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (user.id, user.name, user.email, user.password_hash, user.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s AND deleted_at IS NULL",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s AND deleted_at IS NULL",
                (email,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def soft_delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE app_user SET deleted_at = now(), updated_at = now()
                WHERE id = %s AND deleted_at IS NULL
                """,
                (user_id,),
            )
            return cur.rowcount > 0

    # refresh tokens
    def save_refresh_token(self, record: RefreshTokenRecord) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO refresh_token (jti, user_id, expires_at, created_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (record.jti, record.user_id, record.expires_at, record.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("refresh token already exists", {"field": "jti"})

    def get_refresh_token(self, jti: str) -> Optional[RefreshTokenRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE jti = %s", (jti,)
            ).fetchone()
        if not row:
            return None
        return self._refresh_token_from_row(row)

    def revoke_refresh_token(self, jti: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE refresh_token SET revoked_at = now()
                WHERE jti = %s AND revoked_at IS NULL
                """,
                (jti,),
            )
            return cur.rowcount > 0

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM refresh_token WHERE expires_at <= %s", (now or utcnow(),)
            )
            return cur.rowcount

    def verify_connection(self) -> None:
        """Run a trivial query; raises ``StorageUnavailable`` on failure."""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except Exception as exc:
            raise StorageUnavailable(str(exc)) from exc
