from __future__ import annotations

import re
from collections.abc import Container, Iterable, Mapping
from functools import lru_cache
from typing import Any, Final


ID_FIELD: Final[str] = "id"
QUOTE: Final[str] = "`"
PLACEHOLDER_PREFIX: Final[str] = ":"

_NON_WORD: Final[re.Pattern[str]] = re.compile(r"\W")
_PLACEHOLDER: Final[re.Pattern[str]] = re.compile(r"(?<![:\w]):(\w+)")


@lru_cache(maxsize=2048)
def _quote_identifier(name: str) -> str:
    """Backtick-quote *name*, doubling embedded backticks (cached)."""
    return f"{QUOTE}{name.replace(QUOTE, QUOTE * 2)}{QUOTE}"


def quote_identifier(name: str) -> str:
    """Quote a table or column name for use in rendered SQL.

    Args:
        name: Bare identifier.

    Returns:
        The identifier wrapped in backticks.

    Example:
        >>> quote_identifier("post_tag")
        '`post_tag`'
    """
    return _quote_identifier(name)


def qualify(table: str, field: str) -> str:
    """Return ``\\`table\\`.\\`field\\```."""
    return f"{quote_identifier(table)}.{quote_identifier(field)}"


def build_fields(table: str, fields: Iterable[str], rename: str | None = None) -> str:
    """Render the comma-separated SELECT list for one table.

    When *rename* is given every column is aliased as ``rename.field`` so rows
    coming back from a LEFT JOIN can be told apart from the primary table's.

    Args:
        table: Table the fields belong to.
        fields: Field names, in the order they should be selected.
        rename: Optional alias prefix.

    Returns:
        The rendered field list.
    """
    if rename is None:
        return ", ".join(qualify(table, field) for field in fields)

    return ", ".join(
        f"{qualify(table, field)} AS {quote_identifier(f'{rename}.{field}')}" for field in fields
    )


def normalize_param_name(name: str) -> str:
    """Strip the optional leading ``:`` from a parameter name.

    ``":post_id"`` and ``"post_id"`` name the same parameter.

    Raises:
        ValueError: If nothing is left after stripping.
    """
    stripped = name[1:] if name.startswith(PLACEHOLDER_PREFIX) else name
    if not stripped:
        raise ValueError(f"Invalid parameter name {name!r}")

    return stripped


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a new dict with every key passed through :func:`normalize_param_name`."""
    if not params:
        return {}

    return {normalize_param_name(key): value for key, value in params.items()}


def find_placeholders(sql: str) -> tuple[str, ...]:
    """Names of the ``:name`` placeholders written in *sql*, in order, without repeats.

    ``::`` casts are not placeholders.
    """
    return tuple(dict.fromkeys(_PLACEHOLDER.findall(sql)))


def unique_placeholder(base: str, taken: Container[str]) -> str:
    """Pick a placeholder name derived from *base* that is not in *taken*.

    Non-word characters are replaced with ``_``; a numeric suffix is appended
    until the name is free.
    """
    name = _NON_WORD.sub("_", base) or "param"
    if name not in taken:
        return name

    index = 2
    while f"{name}_{index}" in taken:
        index += 1

    return f"{name}_{index}"


def is_sequence_value(value: Any) -> bool:
    """Whether *value* should be rendered as an ``IN`` list."""
    return isinstance(value, (list, tuple, set, frozenset))
