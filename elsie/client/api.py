from __future__ import annotations

from typing import Any, Optional

import httpx

from elsie.api.schemas import (
    AuthResponse,
    HealthResponse,
    TokenPairResponse,
    UserResponse,
)
from elsie.client.config import ClientConfig
from elsie.client.refresh import LoginRequiredError, RefreshCoordinator
from elsie.client.session import ClientSession
from elsie.client.storage import TokenStorage
from elsie.logging import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    """Error envelope returned by the server."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ApiClient:
    """Async client for the auth API.

    Authenticated calls carry the session's bearer token. A 401 triggers
    one refresh followed by one retry of the original request; if that
    cannot succeed the session is cleared and ``LoginRequiredError`` is
    raised.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        session: Optional[ClientSession] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or ClientConfig.from_env()
        self.session = session or ClientSession(
            TokenStorage(self.config.storage_path), self.config
        )
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            timeout=self.config.timeout_seconds,
            transport=transport,
        )
        self.refresher = RefreshCoordinator(self.session, self._refresh_request)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.is_success and isinstance(body, dict) and body.get("status") == "ok":
            return body.get("data")
        error = (body or {}).get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            error = {}
        raise ApiError(
            response.status_code,
            error.get("code") or "server_error",
            error.get("message") or response.reason_phrase,
            error.get("details"),
        )

    async def _send(
        self, method: str, path: str, *, json: Any = None, token: Optional[str] = None
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return await self._client.request(method, path, json=json, headers=headers)

    async def _request(
        self, method: str, path: str, *, json: Any = None, auth: bool = False
    ) -> Any:
        if not auth:
            return self._unwrap(await self._send(method, path, json=json))

        token = self.session.access_token
        response = await self._send(method, path, json=json, token=token)
        if response.status_code != 401:
            return self._unwrap(response)

        # another caller may already have swapped the token
        current = self.session.access_token
        if current and current != token:
            new_token = current
        else:
            new_token = await self.refresher.refresh()
        response = await self._send(method, path, json=json, token=new_token)
        self.refresher.retry_finished()
        if response.status_code == 401:
            logger.warning("client_retry_unauthorized", path=path)
            self.session.logout()
            raise LoginRequiredError("session expired")
        return self._unwrap(response)

    async def _refresh_request(self, refresh_token: str) -> TokenPairResponse:
        data = await self._request(
            "POST", "/v1/auth/refresh", json={"refresh_token": refresh_token}
        )
        return TokenPairResponse.model_validate(data)

    async def register(self, name: str, email: str, password: str) -> AuthResponse:
        data = await self._request(
            "POST",
            "/v1/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        result = AuthResponse.model_validate(data)
        self.session.login(result)
        self.refresher.reset()
        return result

    async def login(self, email: str, password: str) -> AuthResponse:
        data = await self._request(
            "POST", "/v1/auth/login", json={"email": email, "password": password}
        )
        result = AuthResponse.model_validate(data)
        self.session.login(result)
        self.refresher.reset()
        return result

    async def refresh(self) -> TokenPairResponse:
        await self.refresher.refresh()
        self.refresher.retry_finished()
        return TokenPairResponse(
            access_token=self.session.access_token,
            refresh_token=self.session.refresh_token,
        )

    async def get_me(self) -> UserResponse:
        data = await self._request("GET", "/v1/auth/me", auth=True)
        user = UserResponse.model_validate(data)
        self.session.update_user(user)
        return user

    async def logout(self) -> None:
        refresh_token = self.session.refresh_token
        self.session.logout()
        if not refresh_token:
            return
        try:
            await self._request(
                "POST", "/v1/auth/logout", json={"refresh_token": refresh_token}
            )
        except (ApiError, httpx.HTTPError) as exc:
            # local state is already cleared; the token expires on its own
            logger.warning("client_logout_revoke_failed", error=str(exc))

    async def health(self) -> HealthResponse:
        data = await self._request("GET", "/v1/health")
        return HealthResponse.model_validate(data)

    async def bootstrap(self) -> Optional[UserResponse]:
        """Restore the session from storage on start.

        With only a refresh token the pair is refreshed first; with an
        access token the user is loaded. Any failure logs the session out.
        """
        session = self.session
        if not session.access_token and not session.refresh_token:
            return None
        session.update_loading(True)
        try:
            if not session.access_token:
                await self.refresh()
            return await self.get_me()
        except (LoginRequiredError, ApiError, httpx.HTTPError) as exc:
            logger.info("client_bootstrap_failed", error=str(exc))
            session.logout()
            return None
        finally:
            session.update_loading(False)
