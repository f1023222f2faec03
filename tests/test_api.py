from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from journal_backend.api import create_app, parse_date_bound
from journal_backend.config import Settings
from journal_backend.database import Database

PASSWORD = "super-secret-password"
START = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture()
def client(settings: Settings, database: Database, clock: FixedClock) -> Iterator[TestClient]:
    app = create_app(settings=settings, database=database, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def _register(client: TestClient, username: str, password: str = PASSWORD) -> str:
    response = client.post(
        "/user",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _login(client: TestClient, username: str, password: str = PASSWORD) -> Dict[str, str]:
    response = client.post("/user/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _create_event_type(client: TestClient, headers: Dict[str, str], name: str, tags=()) -> str:
    response = client.post("/event-types", json={"name": name, "tags": list(tags)}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_register_and_login(client: TestClient, settings: Settings) -> None:
    user_id = _register(client, "alice")
    assert user_id

    response = client.post("/user/login", json={"username": "alice", "password": PASSWORD})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == settings.token_ttl_seconds
    assert body["access_token"].count(".") == 2


def test_duplicate_registration_conflicts(client: TestClient) -> None:
    _register(client, "alice")

    response = client.post(
        "/user",
        json={"username": "alice", "email": "other@example.com", "password": PASSWORD},
    )

    assert response.status_code == 409
    assert response.json()["reason"] == "duplicate_name"


@pytest.mark.parametrize("email", ["not-an-email", "alice@example..com", "alice@.example.com"])
def test_registration_requires_valid_email(client: TestClient, email: str) -> None:
    response = client.post(
        "/user",
        json={"username": "alice", "email": email, "password": PASSWORD},
    )

    assert response.status_code == 422
    assert client.post("/user/login", json={"username": "alice", "password": PASSWORD}).status_code == 401


def test_login_failures_are_indistinguishable(client: TestClient) -> None:
    _register(client, "alice")

    wrong_password = client.post("/user/login", json={"username": "alice", "password": "nope"})
    unknown_user = client.post("/user/login", json={"username": "mallory", "password": "nope"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()
    assert wrong_password.json()["reason"] == "invalid_credential"


def test_missing_and_invalid_tokens_are_rejected_distinctly(client: TestClient) -> None:
    missing = client.get("/event-types")
    assert missing.status_code == 401
    assert missing.json()["reason"] == "missing_credential"
    assert missing.headers["www-authenticate"] == "Bearer"

    invalid = client.get("/event-types", headers={"Authorization": "Bearer not.a.token"})
    assert invalid.status_code == 401
    assert invalid.json()["reason"] in {"token_malformed", "token_signature_invalid"}

    other_scheme = client.get("/event-types", headers={"Authorization": "Basic YWxpY2U6cHc="})
    assert other_scheme.status_code == 401
    assert other_scheme.json()["reason"] == "token_malformed"


def test_token_expires_after_ttl(client: TestClient, clock: FixedClock, settings: Settings) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")

    clock.advance(timedelta(seconds=settings.token_ttl_seconds - 1))
    assert client.get("/event-types", headers=headers).status_code == 200

    clock.advance(timedelta(seconds=1))
    expired = client.get("/event-types", headers=headers)
    assert expired.status_code == 401
    assert expired.json()["reason"] == "token_expired"


def test_event_type_crud(client: TestClient) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")

    event_type_id = _create_event_type(client, headers, "Workout", ["gym", " gym ", ""])

    listed = client.get("/event-types", headers=headers).json()
    assert listed == [{"id": event_type_id, "name": "Workout", "tags": ["gym"]}]

    updated = client.put(
        f"/event-types/{event_type_id}",
        json={"name": "Strength", "tags": ["gym", "weights"]},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Strength"

    duplicate = client.post("/event-types", json={"name": "Strength"}, headers=headers)
    assert duplicate.status_code == 409

    deleted = client.delete(f"/event-types/{event_type_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(f"/event-types/{event_type_id}", headers=headers).status_code == 404


def test_cross_user_access_looks_like_missing(client: TestClient) -> None:
    _register(client, "alice")
    _register(client, "bob")
    alice = _login(client, "alice")
    bob = _login(client, "bob")
    bob_type = _create_event_type(client, bob, "Private")
    bob_entry = client.post(
        "/journal-entries",
        json={"event_type_id": bob_type, "description": "secret"},
        headers=bob,
    ).json()["id"]

    foreign_type = client.get(f"/event-types/{bob_type}", headers=alice)
    missing_type = client.get("/event-types/does-not-exist", headers=alice)
    assert foreign_type.status_code == missing_type.status_code == 404
    assert foreign_type.json() == missing_type.json()

    foreign_create = client.post("/journal-entries", json={"event_type_id": bob_type}, headers=alice)
    missing_create = client.post("/journal-entries", json={"event_type_id": "nope"}, headers=alice)
    assert foreign_create.status_code == missing_create.status_code == 404
    assert foreign_create.json() == missing_create.json()

    assert client.get(f"/journal-entries/{bob_entry}", headers=alice).status_code == 404
    assert client.delete(f"/journal-entries/{bob_entry}", headers=alice).status_code == 404
    assert client.get(f"/journal-entries/{bob_entry}", headers=bob).status_code == 200


def test_entry_lifecycle_and_search(client: TestClient) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")
    event_type_id = _create_event_type(client, headers, "Activity")

    created = client.post(
        "/journal-entries",
        json={"event_type_id": event_type_id, "description": "Morning run", "tags": ["gym"]},
        headers=headers,
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["tags"] == ["gym"]
    assert entry["created_at"]

    client.post(
        "/journal-entries",
        json={"event_type_id": event_type_id, "description": "Standup", "tags": ["work"]},
        headers=headers,
    )

    by_tag = client.get("/journal-entries", params={"tags": ["gym", "yoga"]}, headers=headers)
    assert by_tag.status_code == 200
    assert [item["id"] for item in by_tag.json()["entries"]] == [entry["id"]]

    by_text = client.get("/journal-entries", params={"description": "RUN"}, headers=headers).json()
    assert by_text["total_count"] == 1

    updated = client.put(
        f"/journal-entries/{entry['id']}",
        json={"description": "Evening run", "tags": ["gym", "outdoors"]},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["tags"] == ["gym", "outdoors"]
    assert updated.json()["created_at"] == entry["created_at"]

    outdoors = client.get("/journal-entries", params={"tags": "outdoors"}, headers=headers).json()
    assert [item["id"] for item in outdoors["entries"]] == [entry["id"]]

    assert client.delete(f"/journal-entries/{entry['id']}", headers=headers).status_code == 204
    assert client.get(f"/journal-entries/{entry['id']}", headers=headers).status_code == 404


def test_search_pages_with_cursor(client: TestClient) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")
    event_type_id = _create_event_type(client, headers, "Notes")
    for index in range(7):
        client.post(
            "/journal-entries",
            json={"event_type_id": event_type_id, "description": f"note {index}"},
            headers=headers,
        )

    seen = []
    params = {"limit": "3"}
    while True:
        page = client.get("/journal-entries", params=params, headers=headers).json()
        assert page["total_count"] == 7
        seen.extend(item["id"] for item in page["entries"])
        if page["next_cursor"] is None:
            break
        params = {"limit": "3", "cursor": page["next_cursor"]}

    assert len(seen) == len(set(seen)) == 7


@pytest.mark.parametrize(
    "params",
    [
        {"from": "2024-02-01", "to": "2024-01-01"},
        {"from": "yesterday"},
        {"limit": "ten"},
        {"offset": "-1"},
        {"sort": "sideways"},
        {"cursor": "@@@"},
        {"cursor": "eyJ9", "offset": "3"},
        {"offset": "18446744073709551616"},
    ],
)
def test_invalid_search_criteria_are_bad_requests(client: TestClient, params: Dict[str, str]) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")

    response = client.get("/journal-entries", params=params, headers=headers)

    assert response.status_code == 400
    assert response.json()["reason"] == "validation_failure"


def test_search_accepts_date_and_timestamp_bounds(client: TestClient) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")

    response = client.get(
        "/journal-entries",
        params={"from": "2024-01-01", "to": "2030-01-01T00:00:00Z"},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["entries"] == []


def test_update_password(client: TestClient) -> None:
    alice_id = _register(client, "alice")
    bob_id = _register(client, "bob")
    headers = _login(client, "alice")

    changed = client.put(f"/user/{alice_id}", json={"password": "a-brand-new-password"}, headers=headers)
    assert changed.status_code == 204

    old = client.post("/user/login", json={"username": "alice", "password": PASSWORD})
    assert old.status_code == 401
    _login(client, "alice", "a-brand-new-password")

    # Previously issued tokens stay valid until they expire.
    assert client.get("/event-types", headers=headers).status_code == 200

    someone_else = client.put(f"/user/{bob_id}", json={"password": "hijack-attempt"}, headers=headers)
    assert someone_else.status_code == 404
    _login(client, "bob")


def test_update_password_requires_token(client: TestClient) -> None:
    alice_id = _register(client, "alice")

    response = client.put(f"/user/{alice_id}", json={"password": "whatever-password"})

    assert response.status_code == 401
    assert response.json()["reason"] == "missing_credential"


def test_compact_date_bound_covers_whole_day(client: TestClient) -> None:
    _register(client, "alice")
    headers = _login(client, "alice")
    event_type_id = _create_event_type(client, headers, "Daily")
    created = client.post("/journal-entries", json={"event_type_id": event_type_id}, headers=headers).json()
    day = datetime.fromisoformat(created["created_at"].replace("Z", "+00:00")).date()

    for bound in (day.isoformat(), day.strftime("%Y%m%d")):
        page = client.get("/journal-entries", params={"from": bound, "to": bound}, headers=headers).json()
        assert page["total_count"] == 1, bound


def test_parse_date_bound_prefers_whole_days() -> None:
    assert parse_date_bound("20240131", "to") == date(2024, 1, 31)
    assert parse_date_bound("2024-01-31", "to") == date(2024, 1, 31)
    assert parse_date_bound("2024-01-31T10:00:00Z", "to") == datetime(2024, 1, 31, 10, tzinfo=timezone.utc)
    assert parse_date_bound("  ", "to") is None
