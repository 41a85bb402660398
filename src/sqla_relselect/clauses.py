"""WHERE and LIMIT composers shared by the SELECT builder.

Clauses are kept as structured values (a list of fragments, a limit pair) and
only turned into SQL text by the ``*_to_string`` methods, so rendering the
same builder twice always yields the same text.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .tools import (
    ID_FIELD,
    find_placeholders,
    is_sequence_value,
    normalize_params,
    qualify,
    unique_placeholder,
)


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .schema import Entity


@dataclass(frozen=True, slots=True)
class WhereFragment:
    """One boolean SQL expression plus the names of the placeholders it introduced."""

    sql: str
    placeholders: tuple[str, ...] = field(default=())


@dataclass(frozen=True, slots=True)
class LimitClause:
    limit: int | None = None
    offset: int | None = None

    def to_string(self) -> str:
        if self.limit is None:
            return ""

        if self.offset is None:
            return f" LIMIT {self.limit}"

        return f" LIMIT {self.limit} OFFSET {self.offset}"


def _non_negative(value: int, name: str) -> int:
    number = int(value)
    if number < 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")

    return number


class WhereMixin:
    """Accumulates AND-joined WHERE fragments and their bound parameters."""

    entity: Entity
    _where: list[WhereFragment]
    _params: dict[str, Any]

    def where(self, fragment: str, params: Mapping[str, Any] | None = None) -> Self:
        """Append a raw boolean fragment.

        Args:
            fragment: SQL expression, using ``:name`` placeholders.
            params: Values for the placeholders. Keys may be written with or
                without the leading ``:``; an existing key is overwritten.

        Returns:
            The builder, for chaining.
        """
        normalized = normalize_params(params)
        names = dict.fromkeys([*normalized, *find_placeholders(fragment)])
        self._where.append(WhereFragment(fragment, tuple(names)))
        self._params.update(normalized)

        return self

    def by(self, field_name: str, value: Any) -> Self:
        """Filter the primary table by ``field_name``.

        ``None`` renders ``IS NULL``, a list/tuple/set renders ``IN (...)`` with
        one placeholder per item (an empty one matches nothing), anything else
        renders ``=``. Placeholder names never collide with the ones already
        bound or written into a fragment on this builder.
        """
        column = qualify(self.entity.name, field_name)
        if value is None:
            return self.where(f"{column} IS NULL")

        if is_sequence_value(value):
            taken = self._taken_placeholders()
            bound: dict[str, Any] = {}
            for item in value:
                name = unique_placeholder(field_name, taken)
                taken.add(name)
                bound[name] = item

            if not bound:
                return self.where("1 = 0")

            marks = ", ".join(f":{name}" for name in bound)
            return self.where(f"{column} IN ({marks})", bound)

        placeholder = unique_placeholder(field_name, self._taken_placeholders())

        return self.where(f"{column} = :{placeholder}", {placeholder: value})

    def _taken_placeholders(self) -> set[str]:
        taken = set(self._params)
        for fragment in self._where:
            taken.update(fragment.placeholders)

        return taken

    def by_id(self, value: Any) -> Self:
        return self.by(ID_FIELD, value)

    def where_to_string(self) -> str:
        if not self._where:
            return ""

        return " WHERE " + " AND ".join(fragment.sql for fragment in self._where)


class LimitMixin:
    """Holds the LIMIT/OFFSET pair."""

    _limit: LimitClause

    def limit(self, limit: int, offset: int | None = None) -> Self:
        """Set LIMIT, and OFFSET when given.

        OFFSET is only rendered while a LIMIT is set.
        """
        self._limit = LimitClause(
            limit=_non_negative(limit, "limit"),
            offset=self._limit.offset if offset is None else _non_negative(offset, "offset"),
        )

        return self

    def offset(self, offset: int) -> Self:
        self._limit = LimitClause(limit=self._limit.limit, offset=_non_negative(offset, "offset"))

        return self

    @property
    def has_limit(self) -> bool:
        return self._limit.limit is not None

    def limit_to_string(self) -> str:
        return self._limit.to_string()
