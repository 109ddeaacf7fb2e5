"""SQL statement descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Sequence


@dataclass(frozen=True, slots=True)
class Statement:
    """SQL text plus bound parameters.

    ``params`` is a tuple for positional statements (driver paramstyle, ``?``
    for SQLite) or a mapping for named statements (``:name``).
    """

    sql: str
    params: tuple[Any, ...] | Mapping[str, Any] = ()

    @property
    def is_named(self) -> bool:
        return isinstance(self.params, Mapping)


def params_list(sql: str, *values: Any) -> Statement:
    """Build a positional statement: ``params_list("... id = ?", 1)``."""

    return Statement(sql, tuple(values))


def params(sql: str, **values: Any) -> Statement:
    """Build a named statement: ``params("... id = :id", id=1)``."""

    return Statement(sql, MappingProxyType(dict(values)))


def build_statement(
    sql: str | Statement,
    parameters: Sequence[Any] | Mapping[str, Any] | None = None,
) -> Statement:
    """Normalise the ``(sql, params)`` pair accepted by the facade."""

    if isinstance(sql, Statement):
        if parameters:
            raise ValueError("parameters are already bound to the statement")
        return sql
    if parameters is None:
        return Statement(sql)
    if isinstance(parameters, Mapping):
        return Statement(sql, MappingProxyType(dict(parameters)))
    if isinstance(parameters, (str, bytes)):
        raise TypeError("parameters must be a sequence or a mapping, not a string")
    return Statement(sql, tuple(parameters))


__all__ = ["Statement", "build_statement", "params", "params_list"]
