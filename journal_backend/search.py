"""Compose journal entry search criteria into a single scoped query.

Policy, applied uniformly:

* every present criterion narrows the result (logical AND across fields);
* within the tag filter an entry matches when it carries *any* of the given
  tags, unless ``tag_match`` is ``all``;
* the date range is inclusive on both ends; a bare ``date`` as the upper bound
  covers that whole day;
* results are ordered by creation time (descending by default) and ties are
  always broken by id ascending so pages are deterministic.

The owner condition is not part of the composed predicate: the repository
prepends it to every query it runs.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple, Union

from .database import parse_datetime, serialize_datetime
from .errors import ValidationFailure
from .models import AuthenticatedIdentity, JournalEntry

if TYPE_CHECKING:  # pragma: no cover
    from .repository import JournalRepository

DateBound = Union[date, datetime]

# Largest value SQLite accepts for LIMIT/OFFSET.
MAX_SQL_INTEGER = 2**63 - 1


class SortOrder(str, Enum):
    DESC = "desc"
    ASC = "asc"


class TagMatch(str, Enum):
    ANY = "any"
    ALL = "all"


def normalize_tags(tags: Optional[Sequence[str]]) -> Tuple[str, ...]:
    """Strip, drop blanks and de-duplicate while keeping the first-seen order."""
    if not tags:
        return ()
    seen: List[str] = []
    for tag in tags:
        stripped = str(tag).strip()
        if stripped and stripped not in seen:
            seen.append(stripped)
    return tuple(seen)


@dataclass(frozen=True)
class SearchCriteria:
    event_type_id: Optional[str] = None
    tags: Tuple[str, ...] = ()
    tag_match: TagMatch = TagMatch.ANY
    date_from: Optional[DateBound] = None
    date_to: Optional[DateBound] = None
    description: Optional[str] = None
    sort: SortOrder = SortOrder.DESC
    offset: int = 0
    limit: Optional[int] = None
    cursor: Optional[str] = None


@dataclass(frozen=True)
class EntryQuery:
    """Predicate and paging for one search, minus the owner condition."""

    filters: List[str]
    params: List[object]
    cursor_filter: Optional[str]
    cursor_params: List[object]
    descending: bool
    limit: int
    offset: int

    @property
    def fetch_limit(self) -> int:
        # One extra row tells the caller whether another page follows.
        return self.limit + 1

    @property
    def order_by(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"e.created_at {direction}, e.id ASC"


@dataclass(frozen=True)
class SearchPage:
    entries: List[JournalEntry]
    total_count: int
    limit: int
    offset: int
    next_cursor: Optional[str] = None
    has_more: bool = False


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _lower_bound(value: DateBound) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return _start_of_day(value)


def _upper_bound(value: DateBound) -> Tuple[datetime, bool]:
    """Return the upper limit and whether it is inclusive."""
    if isinstance(value, datetime):
        return _as_utc(value), True
    return _start_of_day(value) + timedelta(days=1), False


def _parse_choice(enum_type, value, name: str):
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationFailure(f"Unsupported {name}: {value!r}") from exc


def encode_cursor(entry: JournalEntry) -> str:
    payload = json.dumps(
        {"created_at": serialize_datetime(entry.created_at), "id": entry.id},
        separators=(",", ":"),
    ).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Tuple[str, str]:
    """Return ``(created_at, id)`` encoded in ``cursor``."""
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        created_at = serialize_datetime(parse_datetime(str(data["created_at"])))
        entry_id = str(data["id"])
    except (ValueError, TypeError, KeyError, UnicodeError, binascii.Error) as exc:
        raise ValidationFailure("Malformed pagination cursor") from exc
    return created_at, entry_id


def build_entry_query(
    criteria: SearchCriteria,
    *,
    max_page_size: int,
    default_page_size: int,
) -> EntryQuery:
    """Translate ``criteria`` into SQL fragments with bound parameters only."""

    if criteria.offset < 0:
        raise ValidationFailure("offset must not be negative")
    if criteria.offset > MAX_SQL_INTEGER:
        raise ValidationFailure("offset is too large")
    if criteria.limit is not None and criteria.limit < 1:
        raise ValidationFailure("limit must be at least 1")
    if criteria.cursor and criteria.offset:
        raise ValidationFailure("cursor and offset cannot be combined")

    limit = min(criteria.limit or default_page_size, max_page_size)

    filters: List[str] = []
    params: List[object] = []

    if criteria.event_type_id:
        filters.append("e.event_type_id = ?")
        params.append(criteria.event_type_id)

    tags = normalize_tags(criteria.tags)
    if tags:
        placeholders = ", ".join("?" for _ in tags)
        if _parse_choice(TagMatch, criteria.tag_match, "tag match") is TagMatch.ALL:
            filters.append(
                "(SELECT COUNT(*) FROM journal_entry_tags t "
                f"WHERE t.entry_id = e.id AND t.tag IN ({placeholders})) = ?"
            )
            params.extend(tags)
            params.append(len(tags))
        else:
            filters.append(
                "EXISTS (SELECT 1 FROM journal_entry_tags t "
                f"WHERE t.entry_id = e.id AND t.tag IN ({placeholders}))"
            )
            params.extend(tags)

    lower = _lower_bound(criteria.date_from) if criteria.date_from is not None else None
    upper = _upper_bound(criteria.date_to) if criteria.date_to is not None else None
    if lower is not None and upper is not None:
        upper_value, inclusive = upper
        if lower > upper_value or (lower == upper_value and not inclusive):
            raise ValidationFailure("'from' must not be after 'to'")

    if lower is not None:
        filters.append("e.created_at >= ?")
        params.append(serialize_datetime(lower))

    if upper is not None:
        upper_value, inclusive = upper
        filters.append("e.created_at <= ?" if inclusive else "e.created_at < ?")
        params.append(serialize_datetime(upper_value))

    if criteria.description and criteria.description.strip():
        filters.append("instr(casefold(e.description), ?) > 0")
        params.append(criteria.description.strip().casefold())

    descending = _parse_choice(SortOrder, criteria.sort, "sort order") is SortOrder.DESC
    cursor_filter: Optional[str] = None
    cursor_params: List[object] = []
    if criteria.cursor:
        created_at, entry_id = decode_cursor(criteria.cursor)
        comparison = "<" if descending else ">"
        cursor_filter = f"(e.created_at {comparison} ? OR (e.created_at = ? AND e.id > ?))"
        cursor_params = [created_at, created_at, entry_id]

    return EntryQuery(
        filters=filters,
        params=params,
        cursor_filter=cursor_filter,
        cursor_params=cursor_params,
        descending=descending,
        limit=limit,
        offset=criteria.offset,
    )


class EntrySearch:
    """Run searches through the owner-scoped repository."""

    def __init__(
        self,
        repository: "JournalRepository",
        *,
        max_page_size: int = 100,
        default_page_size: int = 20,
    ) -> None:
        self._repository = repository
        self._max_page_size = max_page_size
        self._default_page_size = min(default_page_size, max_page_size)

    def search(self, identity: AuthenticatedIdentity, criteria: SearchCriteria) -> SearchPage:
        query = build_entry_query(
            criteria,
            max_page_size=self._max_page_size,
            default_page_size=self._default_page_size,
        )
        rows, total = self._repository.query_entries(identity, query)
        has_more = len(rows) > query.limit
        entries = rows[: query.limit]
        next_cursor = encode_cursor(entries[-1]) if has_more and entries else None
        return SearchPage(
            entries=entries,
            total_count=total,
            limit=query.limit,
            offset=query.offset,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def iter_entries(self, identity: AuthenticatedIdentity, criteria: SearchCriteria) -> Iterator[JournalEntry]:
        """Lazily yield every matching entry, one page at a time."""

        page = self.search(identity, criteria)
        while True:
            yield from page.entries
            if page.next_cursor is None:
                return
            criteria = replace(criteria, offset=0, cursor=page.next_cursor)
            page = self.search(identity, criteria)


__all__ = [
    "EntryQuery",
    "EntrySearch",
    "SearchCriteria",
    "SearchPage",
    "SortOrder",
    "TagMatch",
    "build_entry_query",
    "decode_cursor",
    "encode_cursor",
    "normalize_tags",
]
