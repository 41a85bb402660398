from __future__ import annotations

import datetime
import decimal
import json
import logging
import warnings
from collections.abc import Iterator, Mapping
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import sqlalchemy as sa
from sqlalchemy import orm

from .rows import Row, RowCollection
from .tools import ID_FIELD


if TYPE_CHECKING:
    from .core import AsyncSelect, Select
    from .database import AsyncDatabaseHandle, DatabaseHandle

FOREIGN_KEY_TEMPLATE: Final[str] = "{name}_id"
BRIDGE_SEPARATOR: Final[str] = "_"

_TEMPORAL_TYPES: Final[tuple[type, ...]] = (datetime.datetime, datetime.date, datetime.time)

logger = logging.getLogger(__name__)


class Relation(Enum):
    """How one entity refers to another through a direct foreign key."""

    NONE = "none"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"


def _coerce(column: sa.Column[Any], value: Any) -> Any:
    """Convert a raw driver value to the column's Python type where the driver didn't."""
    if value is None:
        return None

    if isinstance(column.type, sa.JSON):
        return json.loads(value) if isinstance(value, (str, bytes)) else value

    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    if isinstance(value, python_type):
        return value

    if python_type is bool:
        return bool(value)

    if python_type in _TEMPORAL_TYPES and isinstance(value, str):
        return python_type.fromisoformat(value)

    if python_type is decimal.Decimal:
        return decimal.Decimal(str(value))

    return value


class Entity:
    """Description of one table: its fields, its foreign key name and its relations.

    The foreign key is the field name *other* tables use to point at this one
    (``post`` is referenced through ``post_id`` by default). Relations are
    inferred from field names only:

    * ``a.relation_to(b) is Relation.HAS_ONE`` when ``a`` holds ``b.foreign_key``
    * ``a.relation_to(b) is Relation.HAS_MANY`` when ``b`` holds ``a.foreign_key``
    * otherwise ``a.bridge_to(b)`` looks for a table named after both (sorted,
      ``post_tag``) holding both foreign keys.

    Entities are created and owned by a :class:`Schema`; they are never mutated
    after construction and hash by identity.
    """

    __slots__ = ("fields", "foreign_key", "name", "schema", "table")

    def __init__(self, table: sa.Table, schema: Schema, *, foreign_key: str) -> None:
        self.name: str = table.name
        self.table = table
        self.fields: Mapping[str, sa.Column[Any]] = MappingProxyType(
            {column.name: column for column in table.columns}
        )
        self.foreign_key = foreign_key
        self.schema = schema

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    @property
    def has_id(self) -> bool:
        return ID_FIELD in self.fields

    def relation_to(self, other: Entity) -> Relation:
        """Classify the direct relation from this entity to *other*.

        ``HAS_ONE`` takes precedence when both tables reference each other.
        """
        if other.foreign_key in self.fields:
            return Relation.HAS_ONE

        if self.foreign_key in other.fields:
            return Relation.HAS_MANY

        return Relation.NONE

    def has_one(self, other: Entity) -> bool:
        return self.relation_to(other) is Relation.HAS_ONE

    def has_many(self, other: Entity) -> bool:
        return self.relation_to(other) is Relation.HAS_MANY

    def bridge_to(self, other: Entity) -> Entity | None:
        """Return the junction entity linking this entity and *other*, if any.

        Entities that are directly related never use a bridge.
        """
        if self.relation_to(other) is not Relation.NONE:
            return None

        bridge = self.schema.get(self.schema.bridge_name(self, other))
        if bridge is None:
            return None

        if self.foreign_key in bridge.fields and other.foreign_key in bridge.fields:
            return bridge

        return None

    def prepare_data_from_database(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize a raw result mapping before :meth:`create`.

        Own fields are coerced to their column's Python type. Keys of the form
        ``table.field`` (LEFT JOIN aliases) are grouped into a nested mapping
        stored under ``table``. Any other key is kept unchanged.
        """
        data: dict[str, Any] = {}
        joined: dict[str, dict[str, Any]] = {}

        for key, value in raw.items():
            table, sep, field_name = key.partition(".")
            if sep:
                joined.setdefault(table, {})[field_name] = value
            elif (column := self.fields.get(key)) is not None:
                data[key] = _coerce(column, value)
            else:
                data[key] = value

        for table, values in joined.items():
            other = self.schema.get(table)
            data[table] = other.prepare_data_from_database(values) if other is not None else values

        return data

    def create(self, data: Mapping[str, Any]) -> Row:
        """Build a :class:`Row` from prepared data.

        Nested mappings stored under the name of another entity become related
        rows; a joined row whose values are all ``None`` (no match) becomes ``None``.
        """
        values: dict[str, Any] = {}
        related: dict[str, Row | None] = {}

        for key, value in data.items():
            other = self.schema.get(key) if key not in self.fields else None
            if other is not None and isinstance(value, Mapping):
                related[key] = (
                    None if all(v is None for v in value.values()) else other.create(value)
                )
            else:
                values[key] = value

        return Row(self, values, related)

    def create_collection(self, *, id_as_key: bool = True) -> RowCollection:
        return RowCollection(self, id_as_key=id_as_key)

    def select(self, database: DatabaseHandle | AsyncDatabaseHandle | None = None) -> Select | AsyncSelect:
        """Start a SELECT on this entity.

        Returns an :class:`~sqla_relselect.core.AsyncSelect` when the handle
        (explicit or bound to the schema) is asynchronous, a
        :class:`~sqla_relselect.core.Select` otherwise.
        """
        from .core import AsyncSelect, Select
        from .database import is_async_handle

        handle = database if database is not None else self.schema.database
        if is_async_handle(handle):
            return AsyncSelect(self, handle)

        return Select(self, handle)


class Schema(Mapping[str, Entity]):
    """Read-only registry of :class:`Entity` objects keyed by table name.

    Args:
        metadata: SQLAlchemy metadata holding the tables.
        database: Default handle used by builders created from this schema.
        foreign_key_template: ``str.format`` template producing each entity's
            foreign key from its ``name``.
        foreign_keys: Per-table overrides of the foreign key name.

    Example:
        >>> schema = Schema(metadata, Database(connection))
        >>> posts = schema.select("post").related_with(tag_row).fetch_all()
    """

    def __init__(
        self,
        metadata: sa.MetaData,
        database: DatabaseHandle | AsyncDatabaseHandle | None = None,
        *,
        foreign_key_template: str = FOREIGN_KEY_TEMPLATE,
        foreign_keys: Mapping[str, str] | None = None,
    ) -> None:
        overrides = dict(foreign_keys or {})
        self.database = database
        self._entities: dict[str, Entity] = {}

        for table in metadata.tables.values():
            foreign_key = overrides.pop(table.name, foreign_key_template.format(name=table.name))
            self._entities[table.name] = Entity(table, self, foreign_key=foreign_key)

        if overrides:
            warnings.warn(
                f"Foreign key overrides for unknown tables ignored: {sorted(overrides)}",
                stacklevel=2,
            )

        logger.debug("Schema built with %d entities: %s", len(self._entities), list(self._entities))

    @classmethod
    def from_base(
        cls,
        base: type[orm.DeclarativeBase],
        database: DatabaseHandle | AsyncDatabaseHandle | None = None,
        **kwargs: Any,
    ) -> Schema:
        """Build a schema from every table registered on a declarative base.

        Raises:
            AssertionError: If base is not a direct subclass of orm.DeclarativeBase.
        """
        assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
            "base must be a subclass of orm.DeclarativeBase"
        )

        return cls(base.metadata, database, **kwargs)

    def __getitem__(self, name: str) -> Entity:
        return self._entities[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {list(self._entities)!r}>"

    @staticmethod
    def bridge_name(entity: Entity, other: Entity) -> str:
        """Name of the junction table between two entities (names sorted, ``_``-joined)."""
        return BRIDGE_SEPARATOR.join(sorted((entity.name, other.name)))

    def select(
        self, name: str, database: DatabaseHandle | AsyncDatabaseHandle | None = None
    ) -> Select | AsyncSelect:
        """Shortcut for ``schema[name].select(database)``."""
        return self[name].select(database)
