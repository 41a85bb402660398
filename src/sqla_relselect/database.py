"""Database handles: the contract the SELECT builder runs statements through.

A handle takes the rendered SQL text and its parameter mapping and returns a
forward-only cursor yielding one field-keyed mapping per row. ``Database`` and
``AsyncDatabase`` implement it on top of a SQLAlchemy ``Connection`` /
``AsyncConnection``; anything with the same shape can be used instead.

Errors raised by SQLAlchemy or the driver are not caught here.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncResult


logger = logging.getLogger(__name__)


def _text(sql: str) -> sa.TextClause:
    # LEFT JOIN columns are aliased `table.field`; keep SQLite from trimming the prefix
    return sa.text(sql).execution_options(sqlite_raw_colnames=True)


@runtime_checkable
class Cursor(Protocol):
    def fetch(self) -> Mapping[str, Any] | None: ...

    def close(self) -> None: ...


@runtime_checkable
class AsyncCursor(Protocol):
    async def fetch(self) -> Mapping[str, Any] | None: ...

    async def close(self) -> None: ...


@runtime_checkable
class DatabaseHandle(Protocol):
    def execute(self, sql: str, params: Mapping[str, Any]) -> Cursor: ...


@runtime_checkable
class AsyncDatabaseHandle(Protocol):
    async def execute(self, sql: str, params: Mapping[str, Any]) -> AsyncCursor: ...


def is_async_handle(handle: object) -> bool:
    """Whether *handle* follows the ``AsyncDatabaseHandle`` contract (a coroutine ``execute``)."""
    return inspect.iscoroutinefunction(getattr(handle, "execute", None))


class ResultCursor:
    """``Cursor`` over a SQLAlchemy result, yielding plain dicts."""

    __slots__ = ("_result",)

    def __init__(self, result: sa.Result[Any]) -> None:
        self._result = result.mappings()

    def fetch(self) -> dict[str, Any] | None:
        row = self._result.fetchone()
        if row is None:
            return None

        return dict(row)

    def close(self) -> None:
        self._result.close()


class AsyncResultCursor:
    """``AsyncCursor`` over a streamed ``AsyncResult``."""

    __slots__ = ("_result",)

    def __init__(self, result: AsyncResult[Any]) -> None:
        self._result = result.mappings()

    async def fetch(self) -> dict[str, Any] | None:
        row = await self._result.fetchone()
        if row is None:
            return None

        return dict(row)

    async def close(self) -> None:
        await self._result.close()


class BufferedAsyncCursor:
    """``AsyncCursor`` over an already buffered result (drivers without server-side cursors)."""

    __slots__ = ("_cursor",)

    def __init__(self, result: sa.Result[Any]) -> None:
        self._cursor = ResultCursor(result)

    async def fetch(self) -> dict[str, Any] | None:
        return self._cursor.fetch()

    async def close(self) -> None:
        self._cursor.close()


class Database:
    """Synchronous handle bound to one SQLAlchemy ``Connection``.

    The connection's transaction is left to the caller.
    """

    __slots__ = ("connection",)

    def __init__(self, connection: sa.Connection) -> None:
        self.connection = connection

    def execute(self, sql: str, params: Mapping[str, Any]) -> ResultCursor:
        logger.debug("Executing %s with params %s", sql, sorted(params))
        result = self.connection.execute(_text(sql), dict(params))

        return ResultCursor(result)


class AsyncDatabase:
    """Asynchronous handle bound to one SQLAlchemy ``AsyncConnection``.

    Results are streamed through a server-side cursor when the dialect
    supports one, so rows arrive as they are fetched; otherwise the driver's
    buffered result is used.
    """

    __slots__ = ("connection",)

    def __init__(self, connection: AsyncConnection) -> None:
        self.connection = connection

    @property
    def streams(self) -> bool:
        return bool(self.connection.dialect.supports_server_side_cursors)

    async def execute(self, sql: str, params: Mapping[str, Any]) -> AsyncResultCursor | BufferedAsyncCursor:
        logger.debug("Executing %s with params %s", sql, sorted(params))
        statement = _text(sql)

        if self.streams:
            return AsyncResultCursor(await self.connection.stream(statement, dict(params)))

        return BufferedAsyncCursor(await self.connection.execute(statement, dict(params)))
