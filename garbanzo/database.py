"""Thin database access layer over a SQLAlchemy engine or connection."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine


class Database:
    """Runs SQL with named parameters and returns rows as dicts.

    Built on an Engine, each call runs in its own committed transaction.
    Built on a Connection, calls join whatever transaction that connection holds.
    """

    def __init__(self, engine: Engine | Connection) -> None:
        self._bind = engine

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if isinstance(self._bind, Engine):
            with self._bind.begin() as conn:
                yield conn
        else:
            yield self._bind

    def query_row(
        self, sql: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Return the first row of the result, or None when there is none."""
        with self._connection() as conn:
            row = conn.execute(text(sql), dict(params or {})).mappings().first()
            return dict(row) if row is not None else None

    def query(
        self, sql: str, params: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Return every row of the result."""
        with self._connection() as conn:
            return [dict(row) for row in conn.execute(text(sql), dict(params or {})).mappings()]

    def exec(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """Run a statement and return the number of affected rows."""
        with self._connection() as conn:
            return conn.execute(text(sql), dict(params or {})).rowcount

    def close(self) -> None:
        """Release pooled connections when built on an engine."""
        if isinstance(self._bind, Engine):
            self._bind.dispose()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _normalise_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://"):]
    return database_url


def connect(database_url: str) -> Database:
    """Open a database and check that it answers; raises if it does not."""
    engine = create_engine(_normalise_url(database_url))
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        engine.dispose()
        raise
    return Database(engine)