"""Exception hierarchy for sqla_relselect.

Configuration errors are raised at the call that introduced the problem
(``related_with``, ``left_join``), never deferred to ``render()`` or execution.
Errors raised by the database driver are not wrapped: they reach the caller
as the SQLAlchemy/DBAPI exception itself.
"""

from __future__ import annotations

from typing import Any


class RelselectError(Exception):
    """Base exception for all sqla_relselect errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RelselectError):
    """The builder was configured with something that can never work."""


class RelationNotFound(ConfigurationError):
    """Two entities have no foreign key and no bridge table between them."""

    def __init__(self, entity: str, other: str) -> None:
        super().__init__(
            f"The tables {entity!r} and {other!r} are not related",
            details={"entity": entity, "other": other},
        )
        self.entity = entity
        self.other = other


class InvalidJoin(ConfigurationError):
    """A LEFT JOIN was requested against an entity that is not has-one related."""

    def __init__(self, entity: str, other: str) -> None:
        super().__init__(
            f"The tables {entity!r} and {other!r} are not related or cannot be joined",
            details={"entity": entity, "other": other},
        )
        self.entity = entity
        self.other = other


class MissingDatabaseError(ConfigurationError):
    """No database handle is available to run the query."""


class InvalidStateError(RelselectError):
    """A terminal operation was called in a lifecycle state that forbids it."""
