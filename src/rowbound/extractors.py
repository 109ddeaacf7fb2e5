"""Extraction strategies and the helpers that apply them.

Strategies are plain callables: an :data:`Extractor` maps one :class:`Row`,
a :data:`RowSetExtractor` folds a whole :class:`RowSet` in a single pass.
"""

from __future__ import annotations

from typing import Any, Callable, Hashable, TypeVar

from .exceptions import DataAccessError, ExtractionError
from .rows import ColumnKey, Row, RowSet

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Extractor = Callable[[Row], T]
RowSetExtractor = Callable[[RowSet], T]

_PASSTHROUGH = (DataAccessError, ExtractionError)

__all__ = [
    "Extractor",
    "RowSetExtractor",
    "create_extractor",
    "apply_row_extractor",
    "apply_rowset_extractor",
    "column",
    "as_dict",
    "as_tuple",
    "row_to",
    "collect",
    "exists",
    "count",
    "first_or_none",
    "group_by",
    "to_mapping",
]


def create_extractor(extractor: Callable[[Row], T]) -> Extractor[T]:
    """Return ``extractor`` unchanged; useful to pin the result type."""

    return extractor


def apply_row_extractor(extractor: Extractor[T], row: Row, row_number: int) -> T:
    """Invoke ``extractor`` on ``row``, wrapping failures in :class:`ExtractionError`."""

    try:
        return extractor(row)
    except _PASSTHROUGH:
        raise
    except Exception as exc:
        raise ExtractionError(
            f"failed to extract row {row_number}: {exc}", row_number=row_number
        ) from exc


def apply_rowset_extractor(extractor: RowSetExtractor[T], rows: RowSet) -> T:
    """Invoke ``extractor`` once on ``rows``, wrapping failures in :class:`ExtractionError`."""

    try:
        return extractor(rows)
    except _PASSTHROUGH:
        raise
    except Exception as exc:
        raise ExtractionError(
            f"failed to extract row set after {rows.position} row(s): {exc}"
        ) from exc


# Row extractors -----------------------------------------------------------


def column(key: ColumnKey) -> Extractor[Any]:
    """Extract a single column by name or 1-based position."""

    def extract(row: Row) -> Any:
        return row.get(key)

    return extract


def as_dict(row: Row) -> dict[str, Any]:
    return row.as_dict()


def as_tuple(row: Row) -> tuple[Any, ...]:
    return row.as_tuple()


def row_to(factory: Callable[..., T]) -> Extractor[T]:
    """Build ``factory(**columns)`` from every row (dataclasses, named tuples)."""

    def extract(row: Row) -> T:
        return factory(**row.as_dict())

    return extract


# Row set extractors -------------------------------------------------------


def collect(extractor: Extractor[T]) -> RowSetExtractor[list[T]]:
    """Apply ``extractor`` to every row, preserving order."""

    def extract(rows: RowSet) -> list[T]:
        return [extractor(row) for row in rows]

    return extract


def exists(rows: RowSet) -> bool:
    return rows.has_next()


def count(rows: RowSet) -> int:
    total = 0
    for _ in rows:
        total += 1
    return total


def first_or_none(extractor: Extractor[T]) -> RowSetExtractor[T | None]:
    def extract(rows: RowSet) -> T | None:
        if not rows.has_next():
            return None
        return extractor(rows.next())

    return extract


def group_by(
    key: Extractor[K], value: Extractor[V]
) -> RowSetExtractor[dict[K, list[V]]]:
    """Group row values by key; groups keep the order of first appearance."""

    def extract(rows: RowSet) -> dict[K, list[V]]:
        groups: dict[K, list[V]] = {}
        for row in rows:
            groups.setdefault(key(row), []).append(value(row))
        return groups

    return extract


def to_mapping(key: Extractor[K], value: Extractor[V]) -> RowSetExtractor[dict[K, V]]:
    def extract(rows: RowSet) -> dict[K, V]:
        mapping: dict[K, V] = {}
        for row in rows:
            k = key(row)
            if k in mapping:
                raise ValueError(f"duplicate key {k!r}")
            mapping[k] = value(row)
        return mapping

    return extract
