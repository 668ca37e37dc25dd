from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated.

    ``detail["field"]`` names the offending column when it is known.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def field(self) -> Optional[str]:
        return self.detail.get("field")


class StorageUnavailable(Exception):
    """Raised when the backing store cannot be reached or queried."""


__all__ = ["ConstraintViolation", "StorageUnavailable"]
