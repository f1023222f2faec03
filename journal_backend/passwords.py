"""One-way password hashing with Argon2id."""
from __future__ import annotations

import logging

from passlib.context import CryptContext

from .config import Settings

logger = logging.getLogger("journal.passwords")


class PasswordHasher:
    """Hash and verify passwords.

    Credentials use the PHC string format (``$argon2id$v=19$m=...,t=...,p=...$salt$hash``)
    so the cost parameters and the per-hash random salt travel with the hash itself.
    Verification recomputes with the embedded parameters and compares in constant time.
    """

    def __init__(self, *, time_cost: int = 3, memory_cost: int = 64 * 1024, parallelism: int = 4) -> None:
        self._context = CryptContext(
            schemes=["argon2"],
            deprecated="auto",
            argon2__type="id",
            argon2__time_cost=time_cost,
            argon2__memory_cost=memory_cost,
            argon2__parallelism=parallelism,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        return self._context.hash(password)

    def verify(self, password: str, credential: str) -> bool:
        """Return ``True`` if ``password`` matches ``credential``.

        A malformed or unrecognised stored credential counts as a mismatch.
        """

        if not credential:
            return False
        try:
            return self._context.verify(password, credential)
        except (ValueError, TypeError):
            logger.warning("Stored credential could not be parsed; treating as mismatch")
            return False

    def dummy_verify(self) -> bool:
        """Spend roughly one verification worth of time; used when no user matched."""
        self._context.dummy_verify()
        return False


__all__ = ["PasswordHasher"]
