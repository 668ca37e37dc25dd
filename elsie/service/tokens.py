from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from elsie.logging import get_logger

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a token, plus the registered claims it was issued with."""

    user_id: str
    email: str
    jti: Optional[str] = None
    token_type: Optional[str] = None
    iat: Optional[int] = None
    exp: Optional[int] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenCodec:
    """HS256 JWT signing and verification with separate access/refresh secrets."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("token secrets must be non-empty")
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}
        self.clock = clock

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._ttls[REFRESH]

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _signature(self, signing_input: str, token_type: str) -> str:
        return self._encode_segment(
            hmac.new(
                self._secrets[token_type].encode(),
                signing_input.encode(),
                hashlib.sha256,
            ).digest()
        )

    def _sign(self, claims: TokenClaims, token_type: str) -> str:
        now = int(self.clock())
        payload = {
            "user_id": claims.user_id,
            "email": claims.email,
            "token_type": token_type,
            "iat": now,
            "exp": now + self._ttls[token_type],
        }
        # access tokens are stateless; only refresh tokens are tracked by jti
        if token_type == REFRESH:
            payload["jti"] = claims.jti or str(uuid.uuid4())
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input, token_type)}"

    def _verify(self, token: str, token_type: str) -> Optional[TokenClaims]:
        if not token or not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected_sig = self._signature(f"{header_b64}.{payload_b64}", token_type)
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload: dict[str, Any] = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("token_type") != token_type:
            return None
        user_id = payload.get("user_id")
        email = payload.get("email")
        if not isinstance(user_id, str) or not isinstance(email, str):
            return None
        exp = payload.get("exp")
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        if exp_ts <= self.clock():
            return None
        return TokenClaims(
            user_id=user_id,
            email=email,
            jti=payload.get("jti"),
            token_type=token_type,
            iat=payload.get("iat"),
            exp=int(exp_ts),
        )

    def sign_access_token(self, claims: TokenClaims) -> str:
        return self._sign(claims, ACCESS)

    def sign_refresh_token(self, claims: TokenClaims) -> str:
        return self._sign(claims, REFRESH)

    def verify_access_token(self, token: str) -> Optional[TokenClaims]:
        """Return the claims of a valid access token, or ``None``."""
        return self._verify(token, ACCESS)

    def verify_refresh_token(self, token: str) -> Optional[TokenClaims]:
        """Return the claims of a valid refresh token, or ``None``."""
        return self._verify(token, REFRESH)

    def issue_pair(self, claims: TokenClaims) -> TokenPair:
        return TokenPair(
            access_token=self.sign_access_token(claims),
            refresh_token=self.sign_refresh_token(claims),
        )
