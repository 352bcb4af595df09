"""Domain models and the operation contract shared by the API and storage layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from .context import RequestContext

# Ids are SQLite INTEGER PRIMARY KEY values.
MAX_USER_ID = 2**63 - 1


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the users table."""

    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserRequest:
    """Client supplied fields for creating or replacing a user."""

    name: str
    email: str


class UserRepository(Protocol):
    """Operations a storage backend must provide to serve the users API."""

    def list(self, ctx: "RequestContext") -> List[User]:
        ...

    def get(self, ctx: "RequestContext", user_id: int) -> User:
        ...

    def create(self, ctx: "RequestContext", request: UserRequest) -> User:
        ...

    def update(self, ctx: "RequestContext", user_id: int, request: UserRequest) -> User:
        ...

    def delete(self, ctx: "RequestContext", user_id: int) -> None:
        ...


__all__ = ["User", "UserRequest", "UserRepository"]
