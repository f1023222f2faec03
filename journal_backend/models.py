"""Domain models for users, event types and journal entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class User:
    """Represents a registered account. The password hash never leaves the database layer."""

    id: str
    username: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Identity asserted by a verified access token, valid for a single request."""

    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class EventType:
    id: str
    user_id: str
    name: str
    tags: Tuple[str, ...]


@dataclass(frozen=True)
class JournalEntry:
    id: str
    user_id: str
    event_type_id: str
    description: Optional[str]
    tags: Tuple[str, ...]
    created_at: datetime


__all__ = ["AuthenticatedIdentity", "EventType", "JournalEntry", "User"]
