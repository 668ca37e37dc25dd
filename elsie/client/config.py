from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator


def _default_storage_path() -> str:
    return str(Path.home() / ".elsie" / "session.json")


class ClientConfig(BaseModel):
    """Settings for the API client.

    ``from_env`` reads ``ELSIE_API_URL``, ``ELSIE_STORAGE_PATH`` and
    ``ELSIE_TIMEOUT_SECONDS`` from the process environment, then ``.env``.
    """

    api_url: str = "http://localhost:4000"
    storage_path: str = Field(default_factory=_default_storage_path)
    access_token_key: str = "accessToken"
    refresh_token_key: str = "refreshToken"
    timeout_seconds: float = Field(10.0, gt=0)

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        env_file_values = dotenv_values(".env")
        mapping = {
            "api_url": "ELSIE_API_URL",
            "storage_path": "ELSIE_STORAGE_PATH",
            "timeout_seconds": "ELSIE_TIMEOUT_SECONDS",
        }
        merged: dict[str, str] = {}
        for name, env_name in mapping.items():
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_file_values.get(env_name):
                merged[name] = env_file_values[env_name]
        return cls(**merged)
