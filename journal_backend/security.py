"""Resolve the authenticated identity behind an incoming request."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import Request

from .errors import MissingCredential, TokenMalformed
from .models import AuthenticatedIdentity
from .tokens import Clock, TokenAuthority, utc_now


class IdentityResolver:
    """Single choke point turning a raw ``Authorization`` header into an identity."""

    def __init__(self, authority: TokenAuthority) -> None:
        self._authority = authority

    def resolve(self, raw_header: Optional[str], now: datetime) -> AuthenticatedIdentity:
        token = parse_bearer_token(raw_header)
        claims = self._authority.verify(token, now)
        return AuthenticatedIdentity(user_id=claims.subject, expires_at=claims.expires_at)


def parse_bearer_token(raw_header: Optional[str]) -> str:
    """Extract the token from ``Bearer <token>``.

    No header (or a bare scheme) is a missing credential; any other scheme is an
    invalid one.
    """

    if raw_header is None or not raw_header.strip():
        raise MissingCredential()
    parts = raw_header.strip().split(None, 1)
    if parts[0].lower() != "bearer":
        raise TokenMalformed("Unsupported authorization scheme")
    if len(parts) == 1 or not parts[1].strip():
        raise MissingCredential()
    return parts[1].strip()


class BearerAuth:
    """FastAPI dependency resolving the caller's identity from the request headers."""

    def __init__(self, resolver: IdentityResolver, *, clock: Clock = utc_now) -> None:
        self._resolver = resolver
        self._clock = clock

    async def __call__(self, request: Request) -> AuthenticatedIdentity:
        return self._resolver.resolve(request.headers.get("authorization"), self._clock())


__all__ = ["BearerAuth", "IdentityResolver", "parse_bearer_token"]
