"""FastAPI application exposing accounts, event types and journal entries."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator

from .accounts import AccountService
from .config import Settings, load_settings
from .database import Database, resolve_database_path
from .errors import JournalError, ValidationFailure
from .models import AuthenticatedIdentity, EventType, JournalEntry
from .passwords import PasswordHasher
from .repository import JournalRepository
from .search import EntrySearch, SearchCriteria, SearchPage
from .security import BearerAuth, IdentityResolver
from .tokens import Clock, TokenAuthority, utc_now

logger = logging.getLogger("journal.api")


def _strip_tags(value: object) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError("tags must be provided as a list of strings")
    tags: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError("tags must contain only strings")
        stripped = item.strip()
        if stripped and stripped not in tags:
            tags.append(stripped)
    return tags


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=1024)


class LoginRequest(BaseModel):
    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=1024)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int


class UpdatePasswordRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=1024)


class IdResponse(BaseModel):
    id: str


class EventTypeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> List[str]:
        return _strip_tags(value)


class EventTypeResponse(BaseModel):
    id: str
    name: str
    tags: List[str]


class NewJournalEntryRequest(BaseModel):
    event_type_id: str = Field(..., min_length=1)
    description: Optional[str] = Field(default=None, max_length=10_000)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> List[str]:
        return _strip_tags(value)


class JournalEntryUpdateRequest(BaseModel):
    description: Optional[str] = Field(default=None, max_length=10_000)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: object) -> List[str]:
        return _strip_tags(value)


class JournalEntryResponse(BaseModel):
    id: str
    event_type_id: str
    description: Optional[str]
    tags: List[str]
    created_at: datetime


class SearchResponse(BaseModel):
    entries: List[JournalEntryResponse]
    total_count: int
    limit: int
    offset: int
    next_cursor: Optional[str] = None


def event_type_to_response(event_type: EventType) -> EventTypeResponse:
    return EventTypeResponse(id=event_type.id, name=event_type.name, tags=list(event_type.tags))


def entry_to_response(entry: JournalEntry) -> JournalEntryResponse:
    return JournalEntryResponse(
        id=entry.id,
        event_type_id=entry.event_type_id,
        description=entry.description,
        tags=list(entry.tags),
        created_at=entry.created_at,
    )


def page_to_response(page: SearchPage) -> SearchResponse:
    return SearchResponse(
        entries=[entry_to_response(entry) for entry in page.entries],
        total_count=page.total_count,
        limit=page.limit,
        offset=page.offset,
        next_cursor=page.next_cursor,
    )


def parse_date_bound(value: Optional[str], name: str) -> Optional[Union[date, datetime]]:
    """Accept an ISO-8601 date (a whole day, ``YYYY-MM-DD`` or ``YYYYMMDD``) or timestamp."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        return _parse_timestamp(text, name)


def _parse_timestamp(text: str, name: str) -> datetime:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationFailure(f"'{name}' must be an ISO-8601 date or timestamp") from exc


def _parse_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ValidationFailure(f"'{name}' must be an integer") from exc


def _journal_error_response(exc: JournalError) -> JSONResponse:
    headers: Optional[Dict[str, str]] = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "reason": exc.reason},
        headers=headers,
    )


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Instantiate the journal API.

    ``clock`` supplies the current time for token issuance and verification.
    """

    if settings is None:
        settings = load_settings()
    if database is None:
        database = Database(
            resolve_database_path(settings.database_path),
            retry_attempts=settings.storage_retry_attempts,
            retry_delay=settings.storage_retry_delay,
        )
    database.initialize()

    authority = TokenAuthority.from_settings(settings)
    accounts = AccountService(database, PasswordHasher.from_settings(settings), authority)
    repository = JournalRepository(database)
    entry_search = EntrySearch(
        repository,
        max_page_size=settings.max_page_size,
        default_page_size=settings.default_page_size,
    )
    current_identity = BearerAuth(IdentityResolver(authority), clock=clock)

    app = FastAPI(
        title="Journal API",
        description="Personal event journal with per-user event types and entries",
        version="0.1.0",
    )

    @app.exception_handler(JournalError)
    async def handle_journal_error(request: Request, exc: JournalError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.debug("%s %s rejected: %s", request.method, request.url.path, exc.reason)
        return _journal_error_response(exc)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @app.post("/user", response_model=IdResponse, status_code=status.HTTP_201_CREATED)
    async def register(payload: RegisterRequest) -> IdResponse:
        user = await accounts.register(payload.username, payload.email, payload.password)
        return IdResponse(id=user.id)

    @app.post("/user/login", response_model=LoginResponse)
    async def login(payload: LoginRequest, response: Response) -> LoginResponse:
        result = await accounts.login(payload.username, payload.password, clock())
        response.headers["Cache-Control"] = "no-store"
        return LoginResponse(
            access_token=result.access_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
        )

    @app.put("/user/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def update_password(
        user_id: str,
        payload: UpdatePasswordRequest,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> Response:
        await accounts.update_password(identity, user_id, payload.password)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    protected_router = APIRouter(dependencies=[Depends(current_identity)])

    # ------------------------------------------------------------------
    # Event types
    # ------------------------------------------------------------------
    @protected_router.get("/event-types", response_model=List[EventTypeResponse])
    def list_event_types(
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> List[EventTypeResponse]:
        return [event_type_to_response(item) for item in repository.list_event_types(identity)]

    @protected_router.post(
        "/event-types",
        response_model=EventTypeResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_event_type(
        payload: EventTypeRequest,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> EventTypeResponse:
        created = repository.create_event_type(identity, payload.name, payload.tags)
        return event_type_to_response(created)

    @protected_router.get("/event-types/{event_type_id}", response_model=EventTypeResponse)
    def read_event_type(
        event_type_id: str,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> EventTypeResponse:
        return event_type_to_response(repository.get_event_type(identity, event_type_id))

    @protected_router.put("/event-types/{event_type_id}", response_model=EventTypeResponse)
    def update_event_type(
        event_type_id: str,
        payload: EventTypeRequest,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> EventTypeResponse:
        updated = repository.update_event_type(identity, event_type_id, payload.name, payload.tags)
        return event_type_to_response(updated)

    @protected_router.delete("/event-types/{event_type_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_event_type(
        event_type_id: str,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> Response:
        repository.delete_event_type(identity, event_type_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ------------------------------------------------------------------
    # Journal entries
    # ------------------------------------------------------------------
    @protected_router.get("/journal-entries", response_model=SearchResponse)
    def search_entries(
        identity: AuthenticatedIdentity = Depends(current_identity),
        event_type_id: Optional[str] = Query(default=None),
        tags: List[str] = Query(default=[]),
        tag_match: str = Query(default="any"),
        date_from: Optional[str] = Query(default=None, alias="from"),
        date_to: Optional[str] = Query(default=None, alias="to"),
        description: Optional[str] = Query(default=None),
        sort: str = Query(default="desc"),
        offset: Optional[str] = Query(default=None),
        limit: Optional[str] = Query(default=None),
        cursor: Optional[str] = Query(default=None),
    ) -> SearchResponse:
        criteria = SearchCriteria(
            event_type_id=event_type_id or None,
            tags=tuple(tags),
            tag_match=tag_match.strip().lower(),
            date_from=parse_date_bound(date_from, "from"),
            date_to=parse_date_bound(date_to, "to"),
            description=description,
            sort=sort.strip().lower(),
            offset=_parse_int(offset, "offset") or 0,
            limit=_parse_int(limit, "limit"),
            cursor=cursor or None,
        )
        return page_to_response(entry_search.search(identity, criteria))

    @protected_router.post(
        "/journal-entries",
        response_model=JournalEntryResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_entry(
        payload: NewJournalEntryRequest,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> JournalEntryResponse:
        entry = repository.create_entry(
            identity,
            payload.event_type_id,
            description=payload.description,
            tags=payload.tags,
        )
        return entry_to_response(entry)

    @protected_router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
    def read_entry(
        entry_id: str,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> JournalEntryResponse:
        return entry_to_response(repository.get_entry(identity, entry_id))

    @protected_router.put("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
    def update_entry(
        entry_id: str,
        payload: JournalEntryUpdateRequest,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> JournalEntryResponse:
        updated = repository.update_entry(identity, entry_id, payload.description, payload.tags)
        return entry_to_response(updated)

    @protected_router.delete("/journal-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_entry(
        entry_id: str,
        identity: AuthenticatedIdentity = Depends(current_identity),
    ) -> Response:
        repository.delete_entry(identity, entry_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(protected_router)

    return app


__all__ = ["create_app"]
