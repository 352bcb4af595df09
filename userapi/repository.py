"""SQL-backed implementation of the user operations."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Callable, List

from .context import RequestContext
from .database import Database
from .models import User, UserRequest

_COLUMNS = "id, name, email, created_at, updated_at"

_LIST_SQL = f"SELECT {_COLUMNS} FROM users ORDER BY id"

_GET_SQL = f"SELECT {_COLUMNS} FROM users WHERE id = ?"

_INSERT_SQL = f"""
    INSERT INTO users (name, email, created_at, updated_at)
    VALUES (?, ?, ?, ?)
    RETURNING {_COLUMNS}
"""

_UPDATE_SQL = f"""
    UPDATE users
       SET name = ?, email = ?, updated_at = ?
     WHERE id = ?
    RETURNING {_COLUMNS}
"""

_DELETE_SQL = "DELETE FROM users WHERE id = ?"


class UserNotFoundError(LookupError):
    """Raised when no user row exists for the requested id."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class UserStore:
    """Create, read, update and delete rows of the ``users`` table.

    The store keeps no state besides the shared :class:`Database` pool it was given;
    it never closes that pool. Every method performs exactly one statement, and
    backend errors propagate unchanged except for a missing row, which becomes
    :class:`UserNotFoundError`.
    """

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], datetime] = _current_timestamp,
    ) -> None:
        self._database = database
        self._clock = clock

    def list(self, ctx: RequestContext) -> List[User]:
        with self._database.connection(ctx) as conn:
            rows = conn.execute(_LIST_SQL).fetchall()
            # Decode everything before leaving the block so a bad row fails the call.
            return [self._row_to_user(row) for row in rows]

    def get(self, ctx: RequestContext, user_id: int) -> User:
        with self._database.connection(ctx) as conn:
            row = conn.execute(_GET_SQL, (user_id,)).fetchone()
            if row is None:
                raise UserNotFoundError(user_id)
            return self._row_to_user(row)

    def create(self, ctx: RequestContext, request: UserRequest) -> User:
        now = _serialize_datetime(self._clock())
        with self._database.connection(ctx) as conn:
            rows = conn.execute(
                _INSERT_SQL,
                (request.name, request.email, now, now),
            ).fetchall()
            return self._row_to_user(rows[0])

    def update(self, ctx: RequestContext, user_id: int, request: UserRequest) -> User:
        now = _serialize_datetime(self._clock())
        with self._database.connection(ctx) as conn:
            rows = conn.execute(
                _UPDATE_SQL,
                (request.name, request.email, now, user_id),
            ).fetchall()
            if not rows:
                raise UserNotFoundError(user_id)
            return self._row_to_user(rows[0])

    def delete(self, ctx: RequestContext, user_id: int) -> None:
        with self._database.connection(ctx) as conn:
            cursor = conn.execute(_DELETE_SQL, (user_id,))
            if cursor.rowcount == 0:
                raise UserNotFoundError(user_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["UserNotFoundError", "UserStore"]
