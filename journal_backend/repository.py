"""Owner-scoped data access for event types and journal entries.

Every statement issued here carries ``user_id = ?`` bound to the caller's
identity. Rows owned by someone else are therefore never read or written, and
an id that belongs to another user looks exactly like an id that does not exist.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .database import Database, current_timestamp, new_id, parse_datetime, serialize_datetime
from .errors import DuplicateName, NotFound, ValidationFailure
from .models import AuthenticatedIdentity, EventType, JournalEntry
from .search import EntryQuery, normalize_tags

logger = logging.getLogger("journal.repository")

EVENT_TYPE_NOT_FOUND = "Event type not found"
ENTRY_NOT_FOUND = "Journal entry not found"


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "unique" in str(exc).lower()


def _normalize_name(name: str) -> str:
    normalized = (name or "").strip()
    if not normalized:
        raise ValidationFailure("Name must not be empty")
    return normalized


def _normalize_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    stripped = description.strip()
    return stripped or None


class JournalRepository:
    """Scoped repository for event types and journal entries."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Event types
    # ------------------------------------------------------------------
    def list_event_types(self, identity: AuthenticatedIdentity) -> List[EventType]:
        rows = self._db.run(
            lambda conn: conn.execute(
                "SELECT * FROM event_types WHERE user_id = ? ORDER BY name, id",
                (identity.user_id,),
            ).fetchall()
        )
        return [self._row_to_event_type(row) for row in rows]

    def get_event_type(self, identity: AuthenticatedIdentity, event_type_id: str) -> EventType:
        row = self._db.run(
            lambda conn: conn.execute(
                "SELECT * FROM event_types WHERE user_id = ? AND id = ?",
                (identity.user_id, event_type_id),
            ).fetchone()
        )
        if row is None:
            raise NotFound(EVENT_TYPE_NOT_FOUND)
        return self._row_to_event_type(row)

    def create_event_type(
        self,
        identity: AuthenticatedIdentity,
        name: str,
        tags: Sequence[str] = (),
    ) -> EventType:
        """Insert an event type.

        Name uniqueness per owner is left to the ``UNIQUE (user_id, name)`` constraint
        so two concurrent creators cannot both succeed.
        """

        event_type = EventType(
            id=new_id(),
            user_id=identity.user_id,
            name=_normalize_name(name),
            tags=normalize_tags(tags),
        )

        def insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO event_types (id, user_id, name, tags) VALUES (?, ?, ?, ?)",
                (event_type.id, event_type.user_id, event_type.name, json.dumps(list(event_type.tags))),
            )

        try:
            self._db.run(insert)
        except sqlite3.IntegrityError as exc:
            if _is_unique_violation(exc):
                raise DuplicateName(f"An event type named '{event_type.name}' already exists") from exc
            # The owning user row is missing.
            raise NotFound(EVENT_TYPE_NOT_FOUND) from exc
        return event_type

    def update_event_type(
        self,
        identity: AuthenticatedIdentity,
        event_type_id: str,
        name: str,
        tags: Sequence[str] = (),
    ) -> EventType:
        normalized_name = _normalize_name(name)
        normalized_tags = normalize_tags(tags)
        try:
            updated = self._db.run(
                lambda conn: conn.execute(
                    "UPDATE event_types SET name = ?, tags = ? WHERE user_id = ? AND id = ?",
                    (normalized_name, json.dumps(list(normalized_tags)), identity.user_id, event_type_id),
                ).rowcount
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateName(f"An event type named '{normalized_name}' already exists") from exc
        if updated == 0:
            raise NotFound(EVENT_TYPE_NOT_FOUND)
        return EventType(
            id=event_type_id,
            user_id=identity.user_id,
            name=normalized_name,
            tags=normalized_tags,
        )

    def delete_event_type(self, identity: AuthenticatedIdentity, event_type_id: str) -> None:
        """Delete an event type; its entries go with it through ``ON DELETE CASCADE``."""

        deleted = self._db.run(
            lambda conn: conn.execute(
                "DELETE FROM event_types WHERE user_id = ? AND id = ?",
                (identity.user_id, event_type_id),
            ).rowcount
        )
        if deleted == 0:
            raise NotFound(EVENT_TYPE_NOT_FOUND)
        logger.info("User %s deleted event type %s", identity.user_id, event_type_id)

    # ------------------------------------------------------------------
    # Journal entries
    # ------------------------------------------------------------------
    def get_entry(self, identity: AuthenticatedIdentity, entry_id: str) -> JournalEntry:
        row = self._db.run(
            lambda conn: conn.execute(
                "SELECT * FROM journal_entries WHERE user_id = ? AND id = ?",
                (identity.user_id, entry_id),
            ).fetchone()
        )
        if row is None:
            raise NotFound(ENTRY_NOT_FOUND)
        return self._row_to_entry(row)

    def create_entry(
        self,
        identity: AuthenticatedIdentity,
        event_type_id: str,
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        created_at: Optional[datetime] = None,
    ) -> JournalEntry:
        """Insert an entry referencing one of the caller's own event types.

        The ownership check and the insert are one ``INSERT ... SELECT`` statement;
        a foreign or unknown event type inserts nothing and yields ``NotFound``.
        """

        entry = JournalEntry(
            id=new_id(),
            user_id=identity.user_id,
            event_type_id=event_type_id,
            description=_normalize_description(description),
            tags=normalize_tags(tags),
            created_at=parse_datetime(serialize_datetime(created_at or current_timestamp())),
        )

        def insert(conn: sqlite3.Connection) -> int:
            inserted = conn.execute(
                """
                INSERT INTO journal_entries (id, user_id, event_type_id, description, tags, created_at)
                SELECT ?, et.user_id, et.id, ?, ?, ?
                  FROM event_types et
                 WHERE et.user_id = ? AND et.id = ?
                """,
                (
                    entry.id,
                    entry.description,
                    json.dumps(list(entry.tags)),
                    serialize_datetime(entry.created_at),
                    identity.user_id,
                    event_type_id,
                ),
            ).rowcount
            if inserted:
                self._write_entry_tags(conn, entry.id, entry.tags)
            return inserted

        if self._db.run(insert) == 0:
            raise NotFound(EVENT_TYPE_NOT_FOUND)
        return entry

    def update_entry(
        self,
        identity: AuthenticatedIdentity,
        entry_id: str,
        description: Optional[str] = None,
        tags: Sequence[str] = (),
    ) -> JournalEntry:
        normalized_description = _normalize_description(description)
        normalized_tags = normalize_tags(tags)

        def update(conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
            updated = conn.execute(
                "UPDATE journal_entries SET description = ?, tags = ? WHERE user_id = ? AND id = ?",
                (normalized_description, json.dumps(list(normalized_tags)), identity.user_id, entry_id),
            ).rowcount
            if not updated:
                return None
            conn.execute("DELETE FROM journal_entry_tags WHERE entry_id = ?", (entry_id,))
            self._write_entry_tags(conn, entry_id, normalized_tags)
            return conn.execute(
                "SELECT * FROM journal_entries WHERE user_id = ? AND id = ?",
                (identity.user_id, entry_id),
            ).fetchone()

        row = self._db.run(update)
        if row is None:
            raise NotFound(ENTRY_NOT_FOUND)
        return self._row_to_entry(row)

    def delete_entry(self, identity: AuthenticatedIdentity, entry_id: str) -> None:
        deleted = self._db.run(
            lambda conn: conn.execute(
                "DELETE FROM journal_entries WHERE user_id = ? AND id = ?",
                (identity.user_id, entry_id),
            ).rowcount
        )
        if deleted == 0:
            raise NotFound(ENTRY_NOT_FOUND)

    def query_entries(
        self,
        identity: AuthenticatedIdentity,
        query: EntryQuery,
    ) -> Tuple[List[JournalEntry], int]:
        """Run a composed search; returns up to ``query.fetch_limit`` rows and the total match count."""

        where = ["e.user_id = ?", *query.filters]
        params: List[object] = [identity.user_id, *query.params]
        count_sql = f"SELECT COUNT(*) FROM journal_entries e WHERE {' AND '.join(where)}"
        count_params = list(params)

        if query.cursor_filter:
            where.append(query.cursor_filter)
            params.extend(query.cursor_params)
        page_sql = (
            f"SELECT e.* FROM journal_entries e WHERE {' AND '.join(where)} "
            f"ORDER BY {query.order_by} LIMIT ? OFFSET ?"
        )
        params.extend([query.fetch_limit, query.offset])

        def select(conn: sqlite3.Connection) -> Tuple[List[sqlite3.Row], int]:
            total = conn.execute(count_sql, count_params).fetchone()[0]
            rows = conn.execute(page_sql, params).fetchall()
            return rows, int(total)

        rows, total = self._db.run(select)
        return [self._row_to_entry(row) for row in rows], total

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _write_entry_tags(conn: sqlite3.Connection, entry_id: str, tags: Sequence[str]) -> None:
        conn.executemany(
            "INSERT INTO journal_entry_tags (entry_id, tag) VALUES (?, ?)",
            [(entry_id, tag) for tag in tags],
        )

    def _row_to_event_type(self, row: sqlite3.Row) -> EventType:
        return EventType(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=str(row["name"]),
            tags=tuple(json.loads(row["tags"] or "[]")),
        )

    def _row_to_entry(self, row: sqlite3.Row) -> JournalEntry:
        return JournalEntry(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            event_type_id=str(row["event_type_id"]),
            description=row["description"],
            tags=tuple(json.loads(row["tags"] or "[]")),
            created_at=parse_datetime(str(row["created_at"])),
        )


__all__ = ["ENTRY_NOT_FOUND", "EVENT_TYPE_NOT_FOUND", "JournalRepository"]
