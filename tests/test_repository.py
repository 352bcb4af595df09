from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from userapi.context import DeadlineExceeded, OperationCancelled, RequestContext
from userapi.database import Database
from userapi.models import UserRequest
from userapi.repository import UserNotFoundError, UserStore


class StepClock:
    """Deterministic clock advancing by a fixed step on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)) -> None:
        self._current = start
        self._step = step

    def __call__(self) -> datetime:
        value = self._current
        self._current += self._step
        return value


START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database(tmp_path / "users.sqlite3")
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def store(database: Database) -> UserStore:
    return UserStore(database, clock=StepClock(START))


@pytest.fixture()
def ctx() -> RequestContext:
    return RequestContext.background()


def test_created_user_can_be_fetched(store: UserStore, ctx: RequestContext) -> None:
    created = store.create(ctx, UserRequest(name="Grace", email="grace@example.com"))

    assert created.id > 0
    assert store.get(ctx, created.id) == created


def test_create_sets_matching_utc_timestamps(database: Database, ctx: RequestContext) -> None:
    store = UserStore(database)
    user = store.create(ctx, UserRequest(name="Linus", email="linus@example.com"))

    assert user.created_at == user.updated_at
    assert user.created_at.utcoffset() == timedelta(0)
    assert user.updated_at.utcoffset() == timedelta(0)


def test_update_replaces_fields_and_refreshes_updated_at(store: UserStore, ctx: RequestContext) -> None:
    original = store.create(ctx, UserRequest(name="Ken", email="ken@example.com"))

    updated = store.update(ctx, original.id, UserRequest(name="Ken T", email="kt@example.com"))

    assert updated.id == original.id
    assert updated.name == "Ken T"
    assert updated.email == "kt@example.com"
    assert updated.created_at == original.created_at
    assert updated.updated_at > original.updated_at
    assert store.get(ctx, original.id) == updated


@pytest.mark.parametrize("operation", ["get", "update", "delete"])
def test_missing_user_raises_not_found(store: UserStore, ctx: RequestContext, operation: str) -> None:
    request = UserRequest(name="Nobody", email="nobody@example.com")
    calls = {
        "get": lambda: store.get(ctx, 404),
        "update": lambda: store.update(ctx, 404, request),
        "delete": lambda: store.delete(ctx, 404),
    }

    with pytest.raises(UserNotFoundError) as excinfo:
        calls[operation]()

    assert excinfo.value.user_id == 404


def test_update_of_missing_user_does_not_insert(store: UserStore, ctx: RequestContext) -> None:
    with pytest.raises(UserNotFoundError):
        store.update(ctx, 7, UserRequest(name="Ghost", email="ghost@example.com"))

    assert store.list(ctx) == []


def test_deleted_user_is_gone(store: UserStore, ctx: RequestContext) -> None:
    user = store.create(ctx, UserRequest(name="Barbara", email="barbara@example.com"))

    store.delete(ctx, user.id)

    with pytest.raises(UserNotFoundError):
        store.get(ctx, user.id)
    with pytest.raises(UserNotFoundError):
        store.delete(ctx, user.id)
    assert store.list(ctx) == []


def test_list_on_empty_table_returns_empty_list(store: UserStore, ctx: RequestContext) -> None:
    assert store.list(ctx) == []


def test_list_is_ordered_by_ascending_id(store: UserStore, ctx: RequestContext) -> None:
    for name in ("Zed", "Amy", "Mo"):
        store.create(ctx, UserRequest(name=name, email=f"{name.lower()}@example.com"))

    users = store.list(ctx)

    assert [user.name for user in users] == ["Zed", "Amy", "Mo"]
    ids = [user.id for user in users]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_ids_are_not_reused_after_delete(store: UserStore, ctx: RequestContext) -> None:
    first = store.create(ctx, UserRequest(name="One", email="one@example.com"))
    store.delete(ctx, first.id)

    second = store.create(ctx, UserRequest(name="Two", email="two@example.com"))

    assert second.id > first.id


def test_duplicate_emails_are_accepted(store: UserStore, ctx: RequestContext) -> None:
    a = store.create(ctx, UserRequest(name="A", email="shared@example.com"))
    b = store.create(ctx, UserRequest(name="B", email="shared@example.com"))

    assert a.id != b.id
    assert len(store.list(ctx)) == 2


def test_lifecycle_scenario(store: UserStore, ctx: RequestContext) -> None:
    created = store.create(ctx, UserRequest(name="Ada", email="ada@x.io"))
    assert created.id == 1
    assert created.name == "Ada"
    assert created.email == "ada@x.io"
    assert created.created_at == created.updated_at == START

    updated = store.update(ctx, 1, UserRequest(name="Ada L", email="ada@x.io"))
    assert updated.id == 1
    assert updated.name == "Ada L"
    assert updated.created_at == START
    assert updated.updated_at > START

    store.delete(ctx, 1)

    with pytest.raises(UserNotFoundError):
        store.get(ctx, 1)


def test_backend_errors_pass_through_unchanged(database: Database, store: UserStore, ctx: RequestContext) -> None:
    with database.connection(ctx) as conn:
        conn.execute("DROP TABLE users")

    with pytest.raises(sqlite3.OperationalError):
        store.list(ctx)
    with pytest.raises(sqlite3.OperationalError):
        store.get(ctx, 1)


def test_constraint_violation_propagates(store: UserStore, ctx: RequestContext) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        store.create(ctx, UserRequest(name=None, email="x@example.com"))  # type: ignore[arg-type]

    assert store.list(ctx) == []


def test_undecodable_row_fails_the_whole_listing(database: Database, store: UserStore, ctx: RequestContext) -> None:
    store.create(ctx, UserRequest(name="Good", email="good@example.com"))
    with database.connection(ctx) as conn:
        conn.execute(
            "INSERT INTO users (name, email, created_at, updated_at) VALUES (?, ?, ?, ?)",
            ("Bad", "bad@example.com", "not-a-timestamp", "not-a-timestamp"),
        )

    with pytest.raises(ValueError):
        store.list(ctx)


def test_cancelled_context_prevents_write(store: UserStore, ctx: RequestContext) -> None:
    cancelled = RequestContext()
    cancelled.cancel()

    with pytest.raises(OperationCancelled):
        store.create(cancelled, UserRequest(name="Late", email="late@example.com"))

    assert store.list(ctx) == []


def test_expired_context_raises_deadline_exceeded(store: UserStore) -> None:
    expired = RequestContext(timeout=0)

    with pytest.raises(DeadlineExceeded):
        store.list(expired)
