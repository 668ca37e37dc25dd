"""Tests for log redaction and client-facing error sanitizing."""

import time

from elsie.logging import _redact_jwts, _redact_pii, sanitize_error_message
from elsie.service.tokens import TokenClaims, TokenCodec


def _token():
    codec = TokenCodec(
        "logging-access-secret-0123456789",
        "logging-refresh-secret-0123456789",
        access_ttl_seconds=60,
        refresh_ttl_seconds=60,
        clock=time.time,
    )
    return codec.sign_access_token(TokenClaims("user-1", "alice@example.com"))


class TestRedaction:
    def test_jwt_in_free_text_is_masked(self):
        token = _token()
        event = _redact_jwts(
            None, "info", {"event": "auth_failed", "detail": f"bad header Bearer {token}"}
        )

        assert token not in event["detail"]
        assert event["detail"].startswith("bad header Bearer eyJ")
        assert "***" in event["detail"]

    def test_values_without_tokens_untouched(self):
        event = _redact_jwts(None, "info", {"event": "auth_login", "user_id": "user-1", "count": 3})

        assert event == {"event": "auth_login", "user_id": "user-1", "count": 3}

    def test_sensitive_keys_masked(self):
        event = _redact_pii(
            None, "info", {"email": "alice@example.com", "refresh_token": "abcdefgh", "user_id": "u-1"}
        )

        assert event["email"] == "al***om"
        assert event["refresh_token"] == "ab***gh"
        assert event["user_id"] == "u-1"


class TestSanitizeErrorMessage:
    def test_strips_bearer_credentials(self):
        message = sanitize_error_message(f"upstream rejected Bearer {_token()}")

        assert "eyJ" not in message
        assert "[redacted]" in message

    def test_strips_connection_details(self):
        message = sanitize_error_message("connection to 10.0.0.1 refused timeout")

        assert "10.0.0.1" not in message

    def test_empty_message_replaced(self):
        assert sanitize_error_message("") == "An error occurred"
