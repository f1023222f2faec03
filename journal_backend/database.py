"""SQLite-backed persistence: schema, connections, retries and user accounts."""
from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar

from .errors import DuplicateName, StorageUnavailable
from .models import User

logger = logging.getLogger("journal.database")

T = TypeVar("T")

_TRANSIENT_MESSAGES = (
    "database is locked",
    "database is busy",
    "database table is locked",
    "unable to open database file",
    "disk i/o error",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS event_types (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS journal_entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    event_type_id TEXT NOT NULL REFERENCES event_types(id) ON DELETE CASCADE,
    description TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS journal_entry_tags (
    entry_id TEXT NOT NULL REFERENCES journal_entries(id) ON DELETE CASCADE,
    tag TEXT NOT NULL,
    PRIMARY KEY (entry_id, tag)
);

CREATE INDEX IF NOT EXISTS idx_journal_entries_user_event_type
    ON journal_entries(user_id, event_type_id);
CREATE INDEX IF NOT EXISTS idx_journal_entries_user_created
    ON journal_entries(user_id, created_at, id);
CREATE INDEX IF NOT EXISTS idx_journal_entry_tags_tag
    ON journal_entry_tags(tag, entry_id);
"""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "journal.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    """Render ``value`` as fixed-width UTC ISO-8601 so text order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def new_id() -> str:
    return str(uuid.uuid4())


def _casefold(value: Optional[str]) -> Optional[str]:
    return None if value is None else str(value).casefold()


def _is_transient(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


class Database:
    """Thin wrapper around SQLite used by the repositories.

    Each logical action runs in its own connection and transaction so that an
    abandoned request never leaves partial state behind.
    """

    def __init__(
        self,
        path: Path,
        *,
        retry_attempts: int = 3,
        retry_delay: float = 0.05,
        timeout: float = 5.0,
    ) -> None:
        _ensure_directory(path)
        self._path = path
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        # SQLite lower() only folds ASCII.
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with closing(self._connect()) as conn:
            with conn:
                conn.executescript(SCHEMA)

    def run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``operation`` inside one transaction, retrying transient failures.

        Only connectivity/locking errors are retried, with exponential backoff.
        Constraint violations propagate immediately.
        """

        delay = self._retry_delay
        for attempt in range(1, self._retry_attempts + 1):
            try:
                with closing(self._connect()) as conn:
                    with conn:
                        return operation(conn)
            except sqlite3.OperationalError as exc:
                if not _is_transient(exc):
                    raise
                if attempt == self._retry_attempts:
                    logger.error("Storage unavailable after %d attempts: %s", attempt, exc)
                    raise StorageUnavailable() from exc
                logger.warning(
                    "Transient storage failure (attempt %d/%d): %s; retrying in %.2fs",
                    attempt,
                    self._retry_attempts,
                    exc,
                    delay,
                )
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, username: str, email: str, password_hash: str) -> User:
        """Insert a user; uniqueness of username and email is enforced by the schema."""

        user = User(
            id=new_id(),
            username=username.strip(),
            email=email.strip().lower(),
            created_at=current_timestamp(),
        )

        def insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO users (id, username, email, password_hash, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.id, user.username, user.email, password_hash, serialize_datetime(user.created_at)),
            )

        try:
            self.run(insert)
        except sqlite3.IntegrityError as exc:
            raise DuplicateName("A user with that username or email already exists") from exc
        return user

    def find_credentials(self, username: str) -> Optional[Tuple[str, str]]:
        """Return ``(user_id, password_hash)`` for ``username`` if it exists."""

        row = self.run(
            lambda conn: conn.execute(
                "SELECT id, password_hash FROM users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        )
        if row is None:
            return None
        return str(row["id"]), str(row["password_hash"])

    def set_password_hash(self, user_id: str, password_hash: str) -> bool:
        updated = self.run(
            lambda conn: conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (password_hash, user_id),
            ).rowcount
        )
        return updated > 0


__all__ = [
    "Database",
    "current_timestamp",
    "new_id",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
]
