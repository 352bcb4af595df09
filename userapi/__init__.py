"""Core package for the users REST service."""

from __future__ import annotations

from typing import Any

from .context import DeadlineExceeded, OperationCancelled, RequestContext
from .database import Database, resolve_database_path
from .models import User, UserRepository, UserRequest
from .repository import UserNotFoundError, UserStore


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the users API application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "DeadlineExceeded",
    "OperationCancelled",
    "RequestContext",
    "User",
    "UserNotFoundError",
    "UserRepository",
    "UserRequest",
    "UserStore",
    "create_app",
    "resolve_database_path",
]
