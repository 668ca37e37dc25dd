from __future__ import annotations

import asyncio

from argon2 import PasswordHasher as Argon2Hasher, Type
from argon2.exceptions import HashingError, InvalidHash, VerificationError, VerifyMismatchError

from elsie.logging import get_logger
from elsie.service.errors import ServerError

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing; the async variants run in a worker thread."""

    algo = "argon2id"

    def __init__(self) -> None:
        self._pwd_hasher = Argon2Hasher(type=Type.ID)

    def hash(self, plaintext: str) -> str:
        try:
            return self._pwd_hasher.hash(plaintext)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise ServerError("internal server error") from exc

    def verify(self, plaintext: str, digest: str) -> bool:
        try:
            return self._pwd_hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_digest_unusable")
            return False

    async def hash_async(self, plaintext: str) -> str:
        return await asyncio.to_thread(self.hash, plaintext)

    async def verify_async(self, plaintext: str, digest: str) -> bool:
        return await asyncio.to_thread(self.verify, plaintext, digest)
