from __future__ import annotations

import warnings
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from .tools import ID_FIELD


if TYPE_CHECKING:
    from .schema import Entity


class Row:
    """A materialized database row bound to its :class:`~sqla_relselect.schema.Entity`.

    Field values are readable with :meth:`get`, by item or as attributes.
    Rows pulled in through a LEFT JOIN are available with :meth:`related`.
    """

    __slots__ = ("_related", "_values", "entity")

    def __init__(
        self,
        entity: Entity,
        values: Mapping[str, Any],
        related: Mapping[str, Row | None] | None = None,
    ) -> None:
        self.entity = entity
        self._values = dict(values)
        self._related = dict(related or {})

    def get_entity(self) -> Entity:
        return self.entity

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    @property
    def id(self) -> Any:
        return self._values.get(ID_FIELD)

    def related(self, name: str) -> Row | None:
        """Return the row joined from table *name*.

        Raises:
            KeyError: If the query did not join *name*.
        """
        return self._related[name]

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __getattr__(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(
                f"{type(self).__name__} of {self.entity.name!r} has no field {name!r}"
            ) from None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self.entity is other.entity and self._values == other._values

        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.entity.name} {self._values!r}>"


class RowCollection:
    """Rows of one entity in arrival order, optionally keyed by id.

    With ``id_as_key`` (the default) indexing is by row id and a later row
    with the same id replaces the earlier one; otherwise rows are kept as a
    plain list and indexing is positional.
    """

    __slots__ = ("_id_as_key", "_rows", "entity")

    def __init__(self, entity: Entity, *, id_as_key: bool = True) -> None:
        self.entity = entity
        if id_as_key and not entity.has_id:
            warnings.warn(
                f"{entity.name!r} has no id field, keeping rows in insertion order",
                stacklevel=3,
            )
            id_as_key = False

        self._rows: dict[Any, Row] | list[Row] = {} if id_as_key else []
        self._id_as_key = id_as_key

    @property
    def id_as_key(self) -> bool:
        return self._id_as_key

    @id_as_key.setter
    def id_as_key(self, value: bool) -> None:
        if value == self._id_as_key:
            return

        if value and not self.entity.has_id:
            warnings.warn(
                f"{self.entity.name!r} has no id field, keeping rows in insertion order",
                stacklevel=2,
            )
            return

        rows = list(self)
        self._id_as_key = value
        self._rows = {} if value else []
        for row in rows:
            self.append(row)

    def append(self, row: Row) -> None:
        if isinstance(self._rows, dict):
            self._rows[row.id] = row
        else:
            self._rows.append(row)

    def __iter__(self) -> Iterator[Row]:
        if isinstance(self._rows, dict):
            return iter(self._rows.values())

        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, key: Any) -> Row:
        return self._rows[key]

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def __bool__(self) -> bool:
        return bool(self._rows)

    def ids(self) -> list[Any]:
        return [row.id for row in self]

    def get(self, name: str) -> list[Any]:
        """Values of field *name* across all rows, in row order."""
        return [row.get(name) for row in self]

    def first(self) -> Row | None:
        return next(iter(self), None)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.entity.name} ({len(self)} rows)>"
