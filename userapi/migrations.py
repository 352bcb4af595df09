"""Versioned schema migrations for the users database."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Sequence


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    sql: str


MIGRATIONS: Sequence[Migration] = (
    Migration(
        version=1,
        description="create users table",
        sql="""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """,
    ),
)


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version, or ``0`` for a fresh database."""

    _ensure_version_table(conn)
    row = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()
    return int(row[0]) if row[0] is not None else 0


def apply_migrations(
    conn: sqlite3.Connection,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> List[int]:
    """Apply every migration newer than the recorded version.

    Each migration runs in its own transaction together with its bookkeeping row so a
    failure leaves the database at the last fully applied version.
    """

    applied: List[int] = []
    version = current_version(conn)
    conn.commit()

    for migration in sorted(migrations, key=lambda item: item.version):
        if migration.version <= version:
            continue
        try:
            conn.execute("BEGIN")
            for statement in _split_statements(migration.sql):
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (migration.version, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        applied.append(migration.version)

    return applied


def _split_statements(sql: str) -> List[str]:
    return [part.strip() for part in sql.split(";") if part.strip()]


__all__ = ["MIGRATIONS", "Migration", "apply_migrations", "current_version"]
