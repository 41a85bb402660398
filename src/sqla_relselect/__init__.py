"""Relationship-aware SELECT builder on top of SQLAlchemy.

sqla_relselect renders parameterized SELECT statements for one table and
works out how to filter it by a row of another table: through a direct
foreign key in either direction, or through a bridge table for
many-to-many relations. Build a ``Schema`` from your metadata (or
declarative base), then chain ``select(...)`` calls and fetch rows either
all at once or one at a time.
"""

from ._version import __version__, __version_tuple__
from .core import AsyncSelect, BaseSelect, Select, SelectState, Statement
from .database import (
    AsyncCursor,
    AsyncDatabase,
    AsyncDatabaseHandle,
    Cursor,
    Database,
    DatabaseHandle,
)
from .exceptions import (
    ConfigurationError,
    InvalidJoin,
    InvalidStateError,
    MissingDatabaseError,
    RelationNotFound,
    RelselectError,
)
from .relations import (
    BridgePlan,
    HasManyPlan,
    HasOnePlan,
    RelationPlan,
    relation_cache_clear,
    relation_cache_info,
    resolve_relation,
)
from .rows import Row, RowCollection
from .schema import Entity, Relation, Schema
from .tools import quote_identifier


__all__ = (
    "AsyncCursor",
    "AsyncDatabase",
    "AsyncDatabaseHandle",
    "AsyncSelect",
    "BaseSelect",
    "BridgePlan",
    "ConfigurationError",
    "Cursor",
    "Database",
    "DatabaseHandle",
    "Entity",
    "HasManyPlan",
    "HasOnePlan",
    "InvalidJoin",
    "InvalidStateError",
    "MissingDatabaseError",
    "Relation",
    "RelationNotFound",
    "RelationPlan",
    "RelselectError",
    "Row",
    "RowCollection",
    "Schema",
    "Select",
    "SelectState",
    "Statement",
    "__version__",
    "__version_tuple__",
    "quote_identifier",
    "relation_cache_clear",
    "relation_cache_info",
    "resolve_relation",
)
