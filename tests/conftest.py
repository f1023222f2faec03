from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Make `journal_backend` and `main` importable when running from a checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from journal_backend.config import Settings
from journal_backend.database import Database
from journal_backend.models import AuthenticatedIdentity
from journal_backend.repository import JournalRepository

TEST_SECRET = "journal-tests-signing-secret-0123456789"
FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        token_secret=TEST_SECRET,
        argon2_time_cost=1,
        argon2_memory_cost=1024,
        argon2_parallelism=1,
        max_page_size=50,
        default_page_size=10,
        storage_retry_delay=0.0,
    )


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "journal.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def repository(database: Database) -> JournalRepository:
    return JournalRepository(database)


def make_identity(database: Database, username: str) -> AuthenticatedIdentity:
    user = database.create_user(username, f"{username}@example.com", "not-a-real-hash")
    return AuthenticatedIdentity(user_id=user.id, expires_at=FAR_FUTURE)


@pytest.fixture()
def alice(database: Database) -> AuthenticatedIdentity:
    return make_identity(database, "alice")


@pytest.fixture()
def bob(database: Database) -> AuthenticatedIdentity:
    return make_identity(database, "bob")
