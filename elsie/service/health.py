from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict

from elsie.logging import get_logger, sanitize_error_message
from elsie.service.users import UserStore

logger = get_logger(__name__)

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


class HealthService:
    """Report API and database liveness.

    Never raises; a failing database yields a ``degraded`` report.
    """

    def __init__(self, store: UserStore, *, timeout: float = HEALTH_CHECK_TIMEOUT_SECONDS) -> None:
        self.store = store
        self.timeout = timeout

    async def check(self) -> Dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await asyncio.wait_for(asyncio.to_thread(self.store.verify_connection), self.timeout)
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", component="db", timeout=self.timeout)
            return self._degraded(timestamp, "database check timed out")
        except Exception as exc:
            logger.error("health_check_db_failed", error=str(exc))
            return self._degraded(timestamp, sanitize_error_message(str(exc)))
        return {
            "status": "ok",
            "timestamp": timestamp,
            "services": {"api": "healthy", "db": "healthy"},
        }

    @staticmethod
    def _degraded(timestamp: str, error: str) -> Dict[str, Any]:
        return {
            "status": "degraded",
            "timestamp": timestamp,
            "services": {"api": "healthy", "db": "unhealthy"},
            "error": error,
        }
