"""Tests for client-side token storage and session state."""

from datetime import datetime, timezone

import pytest

from elsie.api.schemas import AuthResponse, TokenPairResponse, UserResponse
from elsie.client.config import ClientConfig
from elsie.client.session import ClientSession
from elsie.client.storage import TokenStorage


@pytest.fixture
def config(tmp_path):
    return ClientConfig(storage_path=str(tmp_path / "session.json"))


@pytest.fixture
def storage(config):
    return TokenStorage(config.storage_path)


def _auth_response(access="access-1", refresh="refresh-1"):
    return AuthResponse(
        access_token=access,
        refresh_token=refresh,
        user=UserResponse(
            id="user-1",
            name="Alice",
            email="alice@example.com",
            created_at=datetime.now(timezone.utc),
        ),
    )


class TestTokenStorage:
    def test_set_get_remove(self, storage):
        storage.set("accessToken", "abc")
        assert storage.get("accessToken") == "abc"

        storage.remove("accessToken")
        assert storage.get("accessToken") is None

    def test_values_survive_reopen(self, storage, config):
        storage.set("refreshToken", "xyz")

        assert TokenStorage(config.storage_path).get("refreshToken") == "xyz"

    def test_clear(self, storage, config):
        storage.set("a", "1")
        storage.set("b", "2")
        storage.clear()

        assert TokenStorage(config.storage_path).get("a") is None

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{{{")

        assert TokenStorage(path).get("accessToken") is None


class TestClientSession:
    def test_login_persists_tokens_not_user(self, storage, config):
        session = ClientSession(storage, config)
        session.login(_auth_response())

        assert session.is_authenticated
        assert storage.get("accessToken") == "access-1"
        assert storage.get("refreshToken") == "refresh-1"

        restored = ClientSession(TokenStorage(config.storage_path), config)
        assert restored.access_token == "access-1"
        assert restored.refresh_token == "refresh-1"
        assert restored.user is None
        assert not restored.is_authenticated

    def test_logout_clears_everything(self, storage, config):
        session = ClientSession(storage, config)
        session.login(_auth_response())
        session.logout()

        assert session.access_token is None
        assert session.user is None
        assert storage.get("accessToken") is None
        assert storage.get("refreshToken") is None

    def test_update_token_writes_through(self, storage, config):
        session = ClientSession(storage, config)
        session.update_token(TokenPairResponse(access_token="a2", refresh_token="r2"))

        assert storage.get("accessToken") == "a2"
        assert storage.get("refreshToken") == "r2"

    def test_custom_storage_keys(self, tmp_path):
        config = ClientConfig(
            storage_path=str(tmp_path / "s.json"),
            access_token_key="ACCESS_TOKEN",
            refresh_token_key="REFRESH_TOKEN",
        )
        storage = TokenStorage(config.storage_path)
        ClientSession(storage, config).login(_auth_response())

        assert storage.get("ACCESS_TOKEN") == "access-1"
        assert storage.get("accessToken") is None


def test_client_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ELSIE_API_URL", "http://api.test/")
    monkeypatch.setenv("ELSIE_STORAGE_PATH", str(tmp_path / "x.json"))

    config = ClientConfig.from_env()
    assert config.api_url == "http://api.test"
    assert config.storage_path == str(tmp_path / "x.json")
