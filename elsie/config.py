from __future__ import annotations

import os
import re
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from elsie.logging import get_logger

logger = get_logger(__name__)


class AppEnv(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}


def parse_duration(value: str | int | float) -> int:
    """Convert ``"15m"``/``"7d"`` style durations to whole seconds.

    Bare numbers are read as seconds.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        amount, unit = match.groups()
        seconds = float(amount) * _DURATION_UNITS[(unit or "s").lower()]
    if seconds < 1:
        raise ValueError(f"duration must be at least one second: {value!r}")
    return int(seconds)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_secret(fs_root: Path, name: str) -> str:
    """Return a signing secret persisted under ``fs_root``, creating it once.

    Keeps tokens valid across restarts when no secret is configured.
    """
    secret_path = fs_root / f".{name}"
    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        os.chmod(fs_root, 0o700)
    except PermissionError:
        # directory may already exist with different ownership (containers)
        pass
    except OSError as exc:
        logger.warning("secret_dir_setup", error=str(exc), path=str(fs_root))

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if persisted and len(persisted) >= 32:
                return persisted
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    tmp_path: str | None = None
    try:
        # write then rename so readers never see a partial secret
        fd, tmp_path = tempfile.mkstemp(dir=str(fs_root), prefix=f".{name}_", suffix=".tmp")
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        if tmp_path:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {name}; set it in the environment or make SHARED_FS_ROOT writable"
        ) from exc
    logger.warning("secret_generated", name=name, path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Server settings read from the environment and ``.env``."""

    app_env: AppEnv = env_field(AppEnv.DEVELOPMENT, "APP_ENV")
    host: str = env_field("0.0.0.0", "HOST")
    port: int = env_field(4000, "PORT")
    cors_origin: str = env_field(
        "http://localhost:5173",
        "CORS_ORIGIN",
        description="Comma separated list of allowed browser origins",
    )

    db_host: str = env_field("localhost", "DB_HOST")
    db_port: int = env_field(5432, "DB_PORT")
    db_user: str = env_field("postgres", "DB_USER")
    db_password: str = env_field("", "DB_PASSWORD")
    db_name: str = env_field("elsie", "DB_NAME")
    database_url: str | None = env_field(
        None, "DATABASE_URL", description="Overrides the DB_* connection parts"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    shared_fs_root: str = env_field("/srv/elsie", "SHARED_FS_ROOT")
    test_mode: bool = env_field(False, "TEST_MODE")

    jwt_access_token_secret: str = env_field(
        None, "JWT_ACCESS_TOKEN_SECRET", validate_default=True
    )
    jwt_access_token_expired: str = env_field("15m", "JWT_ACCESS_TOKEN_EXPIRED")
    jwt_refresh_token_secret: str = env_field(
        None, "JWT_REFRESH_TOKEN_SECRET", validate_default=True
    )
    jwt_refresh_token_expired: str = env_field("7d", "JWT_REFRESH_TOKEN_EXPIRED")

    user_cache_ttl_seconds: int = env_field(60, "USER_CACHE_TTL_SECONDS", gt=0)
    user_cache_sweep_seconds: int = env_field(5 * 60, "USER_CACHE_SWEEP_SECONDS", gt=0)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_access_token_expired", "jwt_refresh_token_expired")
    @classmethod
    def _validate_expiry(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("jwt_access_token_secret", "jwt_refresh_token_secret", mode="before")
    @classmethod
    def _ensure_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if value:
            return value
        fs_root = Path(info.data.get("shared_fs_root") or "/srv/elsie")
        return _load_or_create_secret(fs_root, info.field_name)

    @model_validator(mode="after")
    def _require_distinct_secrets(self) -> "Settings":
        if self.jwt_access_token_secret == self.jwt_refresh_token_secret:
            raise ValueError(
                "JWT_ACCESS_TOKEN_SECRET and JWT_REFRESH_TOKEN_SECRET must differ"
            )
        return self

    @property
    def access_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_access_token_expired)

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_token_expired)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]

    @property
    def dsn(self) -> str:
        if self.database_url:
            return self.database_url
        auth = self.db_user
        if self.db_password:
            auth = f"{auth}:{self.db_password}"
        return f"postgresql://{auth}@{self.db_host}:{self.db_port}/{self.db_name}"


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
