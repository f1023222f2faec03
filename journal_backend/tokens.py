"""Issue and verify signed, time-bounded access tokens."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from jwt import InvalidAlgorithmError, InvalidSignatureError, InvalidTokenError

from .config import Settings
from .errors import TokenExpired, TokenMalformed, TokenSignatureInvalid

logger = logging.getLogger("journal.tokens")

Clock = Callable[[], datetime]

_DECODE_OPTIONS = {
    # Expiry is checked against the injected clock below, not the wall clock.
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "require": ["sub", "exp", "iat"],
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class IssuedToken:
    access_token: str
    expires_at: datetime
    expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: datetime
    expires_at: datetime


class TokenAuthority:
    """HMAC-signed JWTs asserting a user id.

    The signing key is fixed at construction and shared read-only between requests.
    Tokens carry ``sub``, ``iat`` and ``exp`` (whole seconds); there is no revocation
    list, so a token stays valid for its full lifetime.
    """

    def __init__(self, secret: str, *, ttl: timedelta, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        if ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive")
        self._secret = secret
        self._ttl = ttl
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenAuthority":
        return cls(
            settings.token_secret,
            ttl=timedelta(seconds=settings.token_ttl_seconds),
            algorithm=settings.token_algorithm,
        )

    def issue(self, user_id: str, now: datetime) -> IssuedToken:
        issued_at = _as_utc(now).replace(microsecond=0)
        expires_at = issued_at + self._ttl
        payload = {
            "sub": str(user_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedToken(
            access_token=token,
            expires_at=expires_at,
            expires_in=int(self._ttl.total_seconds()),
        )

    def verify(self, token: str, now: datetime) -> TokenClaims:
        """Return the claims of ``token`` or raise a token rejection.

        The signature is checked before any claim is trusted, so a tampered token is
        reported as invalid even when its expiry has also passed.
        """

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options=_DECODE_OPTIONS,
            )
        except (InvalidSignatureError, InvalidAlgorithmError) as exc:
            logger.debug("Rejected token with bad signature: %s", exc)
            raise TokenSignatureInvalid() from exc
        except InvalidTokenError as exc:
            logger.debug("Rejected malformed token: %s", exc)
            raise TokenMalformed() from exc

        subject = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(subject, str) or not subject:
            raise TokenMalformed()
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise TokenMalformed()
        if not isinstance(iat, (int, float)) or isinstance(iat, bool):
            raise TokenMalformed()

        if _as_utc(now).timestamp() >= exp:
            logger.debug("Rejected expired token for subject %s", subject)
            raise TokenExpired()

        return TokenClaims(
            subject=subject,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


__all__ = ["Clock", "IssuedToken", "TokenAuthority", "TokenClaims", "utc_now"]
