"""Registration, login and password changes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import anyio
from pydantic import EmailStr, TypeAdapter, ValidationError

from .database import Database
from .errors import InvalidCredential, NotFound, ValidationFailure
from .models import AuthenticatedIdentity, User
from .passwords import PasswordHasher
from .tokens import IssuedToken, TokenAuthority

logger = logging.getLogger("journal.accounts")

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    token_type: str
    expires_in: int
    expires_at: datetime

    @classmethod
    def from_token(cls, token: IssuedToken) -> "LoginResult":
        return cls(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            expires_at=token.expires_at,
        )


def _validate_registration(username: str, email: str, password: str) -> str:
    """Check the registration fields and return the normalised email address."""
    if not username or not username.strip():
        raise ValidationFailure("username must not be empty")
    if not password:
        raise ValidationFailure("password must not be empty")
    try:
        return _EMAIL_ADAPTER.validate_python((email or "").strip())
    except ValidationError as exc:
        raise ValidationFailure("email must be a valid address") from exc


class AccountService:
    """Account workflows built on the password hasher and token authority.

    Argon2 work is CPU bound, so hashing and verification run in a worker thread
    and never block the event loop serving other requests.
    """

    def __init__(self, database: Database, hasher: PasswordHasher, authority: TokenAuthority) -> None:
        self._db = database
        self._hasher = hasher
        self._authority = authority

    async def register(self, username: str, email: str, password: str) -> User:
        email = _validate_registration(username, email, password)
        password_hash = await anyio.to_thread.run_sync(self._hasher.hash, password)
        user = await anyio.to_thread.run_sync(self._db.create_user, username, email, password_hash)
        logger.info("Registered user %s", user.id)
        return user

    async def login(self, username: str, password: str, now: datetime) -> LoginResult:
        """Issue a token for valid credentials.

        An unknown username and a wrong password raise the same error, and the
        unknown-username path still spends one verification's worth of work.
        """

        record = await anyio.to_thread.run_sync(self._db.find_credentials, username or "")
        if record is None:
            await anyio.to_thread.run_sync(self._hasher.dummy_verify)
            logger.info("Failed login attempt")
            raise InvalidCredential()

        user_id, password_hash = record
        matches = await anyio.to_thread.run_sync(self._hasher.verify, password, password_hash)
        if not matches:
            logger.info("Failed login attempt")
            raise InvalidCredential()

        return LoginResult.from_token(self._authority.issue(user_id, now))

    async def update_password(self, identity: AuthenticatedIdentity, user_id: str, password: str) -> None:
        """Change the caller's own password. Previously issued tokens remain valid."""

        if identity.user_id != user_id:
            raise NotFound("User not found")
        if not password:
            raise ValidationFailure("password must not be empty")
        password_hash = await anyio.to_thread.run_sync(self._hasher.hash, password)
        updated = await anyio.to_thread.run_sync(self._db.set_password_hash, user_id, password_hash)
        if not updated:
            raise NotFound("User not found")
        logger.info("User %s changed their password", user_id)


__all__ = ["AccountService", "LoginResult"]
