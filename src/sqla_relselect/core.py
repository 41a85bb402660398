from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol

import anyio

from .clauses import LimitClause, LimitMixin, WhereFragment, WhereMixin
from .exceptions import InvalidJoin, InvalidStateError, MissingDatabaseError
from .relations import BridgePlan, HasManyPlan, HasOnePlan, resolve_relation
from .schema import Relation
from .tools import (
    ID_FIELD,
    build_fields,
    find_placeholders,
    normalize_params,
    qualify,
    quote_identifier,
)


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .database import AsyncCursor, AsyncDatabaseHandle, Cursor, DatabaseHandle
    from .rows import Row, RowCollection
    from .schema import Entity

logger = logging.getLogger(__name__)


class RelatedRow(Protocol):
    """Anything that knows its entity and can return field values."""

    def get_entity(self) -> Entity: ...

    def get(self, name: str) -> Any: ...


class SelectState(Enum):
    """Lifecycle of a SELECT builder.

    ``CONFIGURING`` until the lazy cursor is opened by ``fetch_next``
    (``EXECUTING``); ``EXHAUSTED`` once that cursor ran dry or was closed;
    ``MATERIALIZED`` after ``fetch_all``.
    """

    CONFIGURING = "configuring"
    EXECUTING = "executing"
    EXHAUSTED = "exhausted"
    MATERIALIZED = "materialized"


class Statement(NamedTuple):
    sql: str
    params: dict[str, Any]


@dataclass(frozen=True, slots=True)
class _LeftJoin:
    entity: Entity
    on: str


class BaseSelect(WhereMixin, LimitMixin):
    """Fluent SELECT builder for one entity.

    Every configuration method mutates this builder only and returns it, so
    calls can be chained. Nothing is turned into SQL text until
    :meth:`render`, which may be called any number of times::

        sql, params = (
            Select(schema["post"])
            .related_with(tag_row)
            .left_join(schema["user"])
            .order_by("`post`.`id`", "DESC")
            .limit(10)
            .render()
        )

    A builder is single-use state for one query and is not safe to share
    between concurrent callers.
    """

    def __init__(self, entity: Entity) -> None:
        self.entity = entity
        self._from: list[str] = []
        self._fields: list[str] = []
        self._left_join: list[_LeftJoin] = []
        self._order_by: list[str] = []
        self._where: list[WhereFragment] = []
        self._limit = LimitClause()
        self._params: dict[str, Any] = {}
        self._state = SelectState.CONFIGURING

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.entity.name} {self._state.value}>"

    def __str__(self) -> str:
        return self.render().sql

    @property
    def state(self) -> SelectState:
        return self._state

    def from_table(self, table: str) -> Self:
        """Add an extra table to the FROM list.

        Names are not checked against the tables already present; adding one
        twice produces invalid SQL.
        """
        self._from.append(table)

        return self

    def related_with(self, row: RelatedRow) -> Self:
        """Keep only rows related to *row*, whatever the kind of relation.

        Raises:
            RelationNotFound: If the two entities are not related.
        """
        plan = resolve_relation(self.entity, row.get_entity())

        match plan:
            case HasOnePlan(field=field_name):
                return self.by(field_name, row.get(ID_FIELD))
            case HasManyPlan(field=field_name):
                return self.by_id(row.get(field_name))
            case BridgePlan():
                for table in plan.tables:
                    self.from_table(table)

                self._fields.append(plan.selected_field)
                to_primary, to_other, restriction = plan.conditions
                self.where(to_primary)
                self.where(to_other)

                return self.where(restriction, {plan.placeholder: row.get(ID_FIELD)})

    def order_by(self, expression: str, direction: str | None = None) -> Self:
        """Append an ORDER BY expression.

        Both arguments are developer-supplied SQL and are rendered verbatim.
        """
        self._order_by.append(f"{expression} {direction}" if direction else expression)

        return self

    def left_join(
        self,
        entity: Entity,
        on: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Self:
        """LEFT JOIN an entity this one has a foreign key to.

        The joined fields are selected as ``table.field``. Without *on* (or with
        an empty one), the join condition is the foreign key equality.

        Raises:
            InvalidJoin: If this entity does not hold *entity*'s foreign key.
        """
        if self.entity.relation_to(entity) is not Relation.HAS_ONE:
            raise InvalidJoin(self.entity.name, entity.name)

        if not on:
            on = f"{qualify(entity.name, ID_FIELD)} = {qualify(self.entity.name, entity.foreign_key)}"

        self._left_join.append(_LeftJoin(entity=entity, on=on))
        self._params.update(normalize_params(params))

        return self

    def add_params(self, params: Mapping[str, Any]) -> Self:
        """Bind extra placeholder values; an existing name is overwritten."""
        self._params.update(normalize_params(params))

        return self

    def render(self) -> Statement:
        """Build the SQL text and a copy of the bound parameters.

        Clause order is SELECT, FROM, LEFT JOIN, extra FROM tables, WHERE,
        ORDER BY, LIMIT/OFFSET. Empty clauses are omitted.
        """
        fields = [build_fields(self.entity.name, self.entity.fields)]
        fields.extend(
            build_fields(join.entity.name, join.entity.fields, rename=join.entity.name)
            for join in self._left_join
        )
        fields.extend(self._fields)

        query = f"SELECT {', '.join(fields)} FROM {quote_identifier(self.entity.name)}"

        for join in self._left_join:
            query += f" LEFT JOIN {quote_identifier(join.entity.name)} ON ({join.on})"

        if self._from:
            query += ", " + ", ".join(quote_identifier(table) for table in self._from)

        query += self.where_to_string()

        if self._order_by:
            query += " ORDER BY " + ", ".join(self._order_by)

        query += self.limit_to_string()

        return Statement(query, dict(self._params))

    def _taken_placeholders(self) -> set[str]:
        taken = super()._taken_placeholders()
        for join in self._left_join:
            taken.update(find_placeholders(join.on))

        return taken

    def _materialize(self, raw: Mapping[str, Any]) -> Row:
        return self.entity.create(self.entity.prepare_data_from_database(raw))

    def _check_fetch_next(self) -> None:
        if self._state is SelectState.MATERIALIZED:
            raise InvalidStateError(
                f"fetch_next() on {self.entity.name!r} after fetch_all(); "
                "call fetch_one() or build a new query"
            )

    def _database(self, database: Any) -> Any:
        if database is None:
            raise MissingDatabaseError(
                f"No database handle to run the query on {self.entity.name!r}",
                details={"entity": self.entity.name},
            )

        return database


class Select(BaseSelect):
    """SELECT builder executed through a synchronous :class:`DatabaseHandle`.

    Args:
        entity: Entity whose rows are selected.
        database: Handle to run on; defaults to the one bound to the entity's schema.
    """

    def __init__(self, entity: Entity, database: DatabaseHandle | None = None) -> None:
        super().__init__(entity)
        self.database = database if database is not None else entity.schema.database
        self._cursor: Cursor | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def execute(self) -> Cursor:
        """Run the current statement and return a new cursor.

        The cursor belongs to the caller; the builder keeps no reference to it.
        """
        sql, params = self.render()

        return self._database(self.database).execute(sql, params)

    def fetch_all(self, key_by_id: bool = True) -> RowCollection:
        """Run the statement again and materialize every row.

        Args:
            key_by_id: Key the collection by row id instead of position.
        """
        self._discard_cursor()
        cursor = self.execute()
        result = self.entity.create_collection(id_as_key=key_by_id)

        try:
            while (raw := cursor.fetch()) is not None:
                result.append(self._materialize(raw))
        finally:
            cursor.close()

        self._state = SelectState.MATERIALIZED

        return result

    def fetch_one(self) -> Row | None:
        """Return the first row of a fresh execution.

        Sets ``LIMIT 1`` on the builder if no limit was set; the limit stays.
        The cursor stays open until the builder is closed or :meth:`fetch_next`
        runs it dry, so close the builder (or use it as a context manager)
        before running another statement on an unbuffered connection.
        """
        if not self.has_limit:
            self.limit(1)

        self._discard_cursor()

        return self.fetch_next()

    def fetch_next(self) -> Row | None:
        """Return the next row of the lazily opened cursor, or ``None`` once exhausted.

        The statement is executed on the first call only.

        Raises:
            InvalidStateError: If called after :meth:`fetch_all`.
        """
        self._check_fetch_next()
        if self._state is SelectState.EXHAUSTED:
            return None

        if self._cursor is None:
            self._cursor = self.execute()
            self._state = SelectState.EXECUTING
            logger.debug("Opened cursor for %s", self.entity.name)

        try:
            raw = self._cursor.fetch()
        except BaseException:
            self.close()
            raise

        if raw is None:
            self.close()
            return None

        return self._materialize(raw)

    def close(self) -> None:
        """Abort the lazy cursor, if any; ``fetch_next`` returns ``None`` from now on."""
        cursor, self._cursor = self._cursor, None
        self._state = SelectState.EXHAUSTED
        if cursor is not None:
            cursor.close()
            logger.debug("Closed cursor for %s", self.entity.name)

    def _discard_cursor(self) -> None:
        cursor, self._cursor = self._cursor, None
        self._state = SelectState.CONFIGURING
        if cursor is not None:
            cursor.close()


def _aborts(exc: BaseException) -> bool:
    """Whether *exc* is a cancellation or an expired deadline rather than a query failure."""
    return not isinstance(exc, Exception) or isinstance(exc, TimeoutError)


class AsyncSelect(BaseSelect):
    """SELECT builder executed through an :class:`AsyncDatabaseHandle`.

    The terminal methods accept a ``timeout`` in seconds. When it expires, or
    the calling task is cancelled, the open cursor is closed and the builder
    is left ``EXHAUSTED``. Rows are yielded in the order the database returns them.
    """

    def __init__(self, entity: Entity, database: AsyncDatabaseHandle | None = None) -> None:
        super().__init__(entity)
        self.database = database if database is not None else entity.schema.database
        self._cursor: AsyncCursor | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def execute(self, *, timeout: float | None = None) -> AsyncCursor:
        sql, params = self.render()
        database = self._database(self.database)

        with anyio.fail_after(timeout):
            return await database.execute(sql, params)

    async def fetch_all(
        self, key_by_id: bool = True, *, timeout: float | None = None
    ) -> RowCollection:
        await self._discard_cursor()
        result = self.entity.create_collection(id_as_key=key_by_id)

        try:
            with anyio.fail_after(timeout):
                cursor = await self.execute()
                try:
                    while (raw := await cursor.fetch()) is not None:
                        result.append(self._materialize(raw))
                finally:
                    with anyio.CancelScope(shield=True):
                        await cursor.close()
        except BaseException as exc:
            if _aborts(exc):
                self._state = SelectState.EXHAUSTED
            raise

        self._state = SelectState.MATERIALIZED

        return result

    async def fetch_one(self, *, timeout: float | None = None) -> Row | None:
        """Return the first row of a fresh execution.

        Like :meth:`Select.fetch_one`, the streamed result stays open until the
        builder is closed; use ``async with`` when more statements follow on the
        same connection.
        """
        if not self.has_limit:
            self.limit(1)

        await self._discard_cursor()

        return await self.fetch_next(timeout=timeout)

    async def fetch_next(self, *, timeout: float | None = None) -> Row | None:
        self._check_fetch_next()
        if self._state is SelectState.EXHAUSTED:
            return None

        try:
            with anyio.fail_after(timeout):
                if self._cursor is None:
                    self._cursor = await self.execute()
                    self._state = SelectState.EXECUTING
                    logger.debug("Opened cursor for %s", self.entity.name)

                raw = await self._cursor.fetch()
        except BaseException as exc:
            if self._cursor is not None or _aborts(exc):
                await self.close()
            raise

        if raw is None:
            await self.close()
            return None

        return self._materialize(raw)

    async def close(self) -> None:
        cursor, self._cursor = self._cursor, None
        self._state = SelectState.EXHAUSTED
        if cursor is not None:
            with anyio.CancelScope(shield=True):
                await cursor.close()
            logger.debug("Closed cursor for %s", self.entity.name)

    async def _discard_cursor(self) -> None:
        cursor, self._cursor = self._cursor, None
        self._state = SelectState.CONFIGURING
        if cursor is not None:
            with anyio.CancelScope(shield=True):
                await cursor.close()
