"""SQLite connection pool shared by the users store."""
from __future__ import annotations

import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .context import RequestContext
from .migrations import apply_migrations, current_version

# Number of SQLite VM instructions between cancellation checks.
_PROGRESS_INTERVAL = 1000


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


class Database:
    """Bounded pool of SQLite connections for a single database file.

    The pool is created once by the process and handed to whoever needs database
    access. Connections are opened lazily up to ``pool_size`` and reused afterwards.
    """

    def __init__(self, path: Path, *, pool_size: int = 5) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        _ensure_directory(path)
        self._path = path
        self._pool_size = pool_size
        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue()
        self._all: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pool_size(self) -> int:
        return self._pool_size

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _acquire(self, ctx: RequestContext) -> sqlite3.Connection:
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._closed:
                raise RuntimeError("Database pool is closed")
            if len(self._all) < self._pool_size:
                conn = self._open()
                self._all.append(conn)
                return conn

        # Pool exhausted: wait for a connection, bounded by the caller's deadline.
        while True:
            ctx.raise_if_done()
            remaining = ctx.remaining()
            wait = 0.05 if remaining is None else min(0.05, remaining)
            try:
                return self._idle.get(timeout=wait)
            except queue.Empty:
                if self._closed:
                    raise RuntimeError("Database pool is closed")

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._closed:
            conn.close()
            return
        self._idle.put(conn)

    @contextmanager
    def connection(self, ctx: RequestContext) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of one unit of work.

        The work is committed when the block exits cleanly and rolled back otherwise.
        While the block runs, statements are interrupted as soon as ``ctx`` is
        cancelled or its deadline passes, and a done context is never committed.
        """

        ctx.raise_if_done()
        conn = self._acquire(ctx)
        conn.set_progress_handler(ctx.done, _PROGRESS_INTERVAL)
        try:
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                # An aborted progress handler surfaces as "interrupted".
                cause = ctx.error()
                if cause is not None and "interrupted" in str(exc):
                    raise cause from exc
                raise
            finally:
                conn.set_progress_handler(None, 0)
            ctx.raise_if_done()
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._release(conn)

    def initialize(self) -> List[int]:
        """Apply any pending schema migrations and return the versions applied."""

        with self.connection(RequestContext.background()) as conn:
            return apply_migrations(conn)

    def schema_version(self) -> int:
        with self.connection(RequestContext.background()) as conn:
            return current_version(conn)

    def ping(self, ctx: RequestContext) -> None:
        with self.connection(ctx) as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        """Close every pooled connection. Connections still in use close on release."""

        with self._lock:
            self._closed = True
            self._all.clear()
        while True:
            try:
                idle = self._idle.get_nowait()
            except queue.Empty:
                break
            idle.close()


__all__ = ["Database", "resolve_database_path"]
