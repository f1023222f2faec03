"""Error kinds raised by the journal core.

Every rejection the core can produce is a subclass of :class:`JournalError`
carrying a stable ``reason`` code and the HTTP status the API layer maps it to.
"""
from __future__ import annotations

from typing import Optional


class JournalError(Exception):
    """Base class for definite, non-retryable outcomes of a core operation."""

    reason = "error"
    status_code = 500
    default_message = "Could not process request"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class InvalidCredential(JournalError):
    """Username or password did not match; which one is never disclosed."""

    reason = "invalid_credential"
    status_code = 401
    default_message = "Invalid username or password"


class MissingCredential(JournalError):
    reason = "missing_credential"
    status_code = 401
    default_message = "Missing bearer token"


class TokenInvalid(JournalError):
    reason = "token_invalid"
    status_code = 401
    default_message = "Invalid access token"


class TokenMalformed(TokenInvalid):
    reason = "token_malformed"
    default_message = "Malformed access token"


class TokenSignatureInvalid(TokenInvalid):
    reason = "token_signature_invalid"
    default_message = "Access token signature is invalid"


class TokenExpired(JournalError):
    reason = "token_expired"
    status_code = 401
    default_message = "Access token has expired"


class NotFound(JournalError):
    """The resource is absent or owned by another user; the two are indistinguishable."""

    reason = "not_found"
    status_code = 404
    default_message = "Requested resource not found"


class DuplicateName(JournalError):
    reason = "duplicate_name"
    status_code = 409
    default_message = "A resource with that name already exists"


class ValidationFailure(JournalError):
    reason = "validation_failure"
    status_code = 400
    default_message = "Invalid request"


class StorageUnavailable(JournalError):
    """The storage engine stayed unreachable after bounded retries."""

    reason = "storage_unavailable"
    status_code = 503
    default_message = "Storage is temporarily unavailable"


__all__ = [
    "DuplicateName",
    "InvalidCredential",
    "JournalError",
    "MissingCredential",
    "NotFound",
    "StorageUnavailable",
    "TokenExpired",
    "TokenInvalid",
    "TokenMalformed",
    "TokenSignatureInvalid",
    "ValidationFailure",
]
