"""Relationship resolution between two entities.

``resolve_relation`` picks one of three query shapes for "rows of *primary*
related to a row of *other*":

* ``HasOnePlan``: primary holds other's foreign key, filter on it.
* ``HasManyPlan``: other holds primary's foreign key, filter primary's id by
  the value the other row carries.
* ``BridgePlan``: a junction table holds both foreign keys; the bridge and
  the other table are added to FROM and tied together in WHERE.

Plans are immutable and depend only on the two entities, so they are cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Final, TypeAlias

from .exceptions import RelationNotFound
from .schema import Relation
from .tools import ID_FIELD, qualify


if TYPE_CHECKING:
    from .schema import Entity

DEFAULT_RELATION_CACHE_SIZE: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class HasOnePlan:
    """Filter ``primary.field = <other row id>``."""

    field: str


@dataclass(frozen=True, slots=True)
class HasManyPlan:
    """Filter ``primary.id = <other row's value of field>``."""

    field: str


@dataclass(frozen=True, slots=True)
class BridgePlan:
    """Reach *other* from *primary* through the junction entity *bridge*."""

    primary: Entity
    bridge: Entity
    other: Entity

    @property
    def tables(self) -> tuple[str, str]:
        """Tables to add to FROM, in order."""
        return (self.bridge.name, self.other.name)

    @property
    def selected_field(self) -> str:
        return qualify(self.bridge.name, self.other.foreign_key)

    @property
    def placeholder(self) -> str:
        return self.bridge.name

    @property
    def conditions(self) -> tuple[str, str, str]:
        """The two join conditions followed by the ``IN`` restriction on the other row."""
        return (
            f"{qualify(self.bridge.name, self.primary.foreign_key)} = {qualify(self.primary.name, ID_FIELD)}",
            f"{qualify(self.bridge.name, self.other.foreign_key)} = {qualify(self.other.name, ID_FIELD)}",
            f"{qualify(self.other.name, ID_FIELD)} IN (:{self.placeholder})",
        )


RelationPlan: TypeAlias = HasOnePlan | HasManyPlan | BridgePlan


@lru_cache(maxsize=DEFAULT_RELATION_CACHE_SIZE)
def _resolve_relation(primary: Entity, other: Entity) -> RelationPlan:
    match primary.relation_to(other):
        case Relation.HAS_ONE:
            return HasOnePlan(field=other.foreign_key)
        case Relation.HAS_MANY:
            return HasManyPlan(field=primary.foreign_key)
        case Relation.NONE:
            if (bridge := primary.bridge_to(other)) is not None:
                return BridgePlan(primary=primary, bridge=bridge, other=other)

    raise RelationNotFound(primary.name, other.name)


def resolve_relation(primary: Entity, other: Entity) -> RelationPlan:
    """Decide how to filter *primary* rows by a row of *other*.

    Args:
        primary: Entity being selected.
        other: Entity of the row used as a filter.

    Returns:
        A ``HasOnePlan``, ``HasManyPlan`` or ``BridgePlan``.

    Raises:
        RelationNotFound: If there is neither a direct foreign key nor a
            bridge table between the two entities.
    """
    return _resolve_relation(primary, other)


def relation_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics of the resolver."""
    return {_resolve_relation.__name__: _resolve_relation.cache_info()}


def relation_cache_clear() -> None:
    _resolve_relation.cache_clear()
