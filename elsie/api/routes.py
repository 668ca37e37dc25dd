from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from elsie.api.error_handling import http_error
from elsie.api.schemas import (
    AuthResponse,
    Envelope,
    HealthResponse,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from elsie.logging import get_logger
from elsie.service.auth import AuthResult
from elsie.service.authenticator import AuthContext
from elsie.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


async def optional_user(request: Request) -> Optional[AuthContext]:
    """Caller identity attached by the auth middleware, if any."""
    return getattr(request.state, "auth", None)


async def require_user(
    request: Request,
    auth: Optional[AuthContext] = Depends(optional_user),
) -> AuthContext:
    auth_error = getattr(request.state, "auth_error", None)
    if auth_error is not None:
        raise auth_error
    if auth is None:
        raise http_error(
            "unauthorized",
            "authentication required",
            status_code=401,
        )
    return auth


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserResponse.from_user(result.user),
    )


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account and return a token pair with the new user.

    Raises:
        409: If the email is already registered
    """
    runtime = get_runtime()
    result = await runtime.auth.register(
        name=body.name, email=body.email, password=body.password
    )
    return Envelope(status="ok", data=_auth_response(result))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with email and password.

    Raises:
        401: If the password does not match
        404: If no account uses the email
    """
    runtime = get_runtime()
    result = await runtime.auth.login(email=body.email, password=body.password)
    return Envelope(status="ok", data=_auth_response(result))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: RefreshRequest):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(body.refresh_token)
    return Envelope(
        status="ok",
        data=TokenPairResponse(
            access_token=tokens.access_token, refresh_token=tokens.refresh_token
        ),
    )


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_me(principal: AuthContext = Depends(require_user)):
    runtime = get_runtime()
    user = await runtime.auth.get_me(principal.user_id)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest):
    runtime = get_runtime()
    await runtime.auth.logout(body.refresh_token)
    return Envelope(status="ok", data={"logged_out": True})


@router.get("/health", response_model=Envelope, tags=["health"])
async def health_check(principal: Optional[AuthContext] = Depends(optional_user)):
    runtime = get_runtime()
    report = await runtime.health.check()
    if principal is not None:
        logger.debug("health_check_authenticated", user_id=principal.user_id)
    return Envelope(status="ok", data=HealthResponse(**report))
