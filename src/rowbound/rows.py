"""Result records handed to extractors.

A :class:`Row` is an immutable, column-addressable record. A :class:`RowSet`
is the ordered, forward-only sequence of rows produced by one query. Both are
produced by the execution engine and only borrowed by extractors for the
duration of a single extraction call.
"""

from __future__ import annotations

import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .exceptions import IllegalStateError

__all__ = ["Row", "RowSet"]

ColumnKey = str | int


class Row:
    """Single result record addressable by column name or 1-based position."""

    __slots__ = ("_columns", "_values", "_index")

    def __init__(self, columns: Sequence[str], values: Sequence[Any]) -> None:
        if len(columns) != len(values):
            raise ValueError(
                f"row has {len(values)} values for {len(columns)} columns"
            )
        self._columns = tuple(columns)
        self._values = tuple(values)
        index: dict[str, int] = {}
        for position, name in enumerate(self._columns):
            # Duplicate labels resolve to the first occurrence.
            index.setdefault(name, position)
            index.setdefault(name.lower(), position)
        self._index = index

    def __repr__(self) -> str:
        pairs = ", ".join(f"{k}={v!r}" for k, v in zip(self._columns, self._values))
        return f"Row({pairs})"

    def __len__(self) -> int:
        return len(self._values)

    def __getitem__(self, key: ColumnKey) -> Any:
        return self.get(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self._columns == other._columns and self._values == other._values

    def __hash__(self) -> int:
        return hash((self._columns, self._values))

    def _position(self, key: ColumnKey) -> int:
        if isinstance(key, bool):
            raise TypeError("column key must be a name or a 1-based position")
        if isinstance(key, int):
            if not 1 <= key <= len(self._values):
                raise IndexError(
                    f"column position {key} out of range 1..{len(self._values)}"
                )
            return key - 1
        position = self._index.get(key)
        if position is None:
            position = self._index.get(key.lower())
        if position is None:
            raise KeyError(f"no column named '{key}' in {list(self._columns)}")
        return position

    def get(self, key: ColumnKey) -> Any:
        """Return the raw value of a column (``None`` for SQL NULL)."""

        return self._values[self._position(key)]

    def require(self, key: ColumnKey) -> Any:
        """Return the value of a column, rejecting SQL NULL."""

        value = self.get(key)
        if value is None:
            raise ValueError(f"Unexpected null for column '{key}'")
        return value

    def keys(self) -> tuple[str, ...]:
        return self._columns

    def as_tuple(self) -> tuple[Any, ...]:
        return self._values

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self._columns, self._values))

    # Typed accessors ----------------------------------------------------

    def integer(self, key: ColumnKey) -> int:
        return _to_int(key, self.require(key))

    def integer_or_none(self, key: ColumnKey) -> int | None:
        value = self.get(key)
        return None if value is None else _to_int(key, value)

    def number(self, key: ColumnKey) -> float:
        return _to_float(key, self.require(key))

    def number_or_none(self, key: ColumnKey) -> float | None:
        value = self.get(key)
        return None if value is None else _to_float(key, value)

    def decimal(self, key: ColumnKey) -> Decimal:
        return _to_decimal(key, self.require(key))

    def decimal_or_none(self, key: ColumnKey) -> Decimal | None:
        value = self.get(key)
        return None if value is None else _to_decimal(key, value)

    def string(self, key: ColumnKey) -> str:
        return _to_str(key, self.require(key))

    def string_or_none(self, key: ColumnKey) -> str | None:
        value = self.get(key)
        return None if value is None else _to_str(key, value)

    def boolean(self, key: ColumnKey) -> bool:
        return _to_bool(key, self.require(key))

    def boolean_or_none(self, key: ColumnKey) -> bool | None:
        value = self.get(key)
        return None if value is None else _to_bool(key, value)

    def blob(self, key: ColumnKey) -> bytes:
        return _to_bytes(key, self.require(key))

    def blob_or_none(self, key: ColumnKey) -> bytes | None:
        value = self.get(key)
        return None if value is None else _to_bytes(key, value)

    def timestamp(self, key: ColumnKey) -> datetime:
        return _to_datetime(key, self.require(key))

    def timestamp_or_none(self, key: ColumnKey) -> datetime | None:
        value = self.get(key)
        return None if value is None else _to_datetime(key, value)

    def date(self, key: ColumnKey) -> date:
        return _to_date(key, self.require(key))

    def date_or_none(self, key: ColumnKey) -> date | None:
        value = self.get(key)
        return None if value is None else _to_date(key, value)


def _mismatch(key: ColumnKey, expected: str, value: Any) -> TypeError:
    return TypeError(
        f"column '{key}' holds {type(value).__name__} ({value!r}), expected {expected}"
    )


def _to_int(key: ColumnKey, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        raise _mismatch(key, "int", value)
    if isinstance(value, Decimal) and value != value.to_integral_value():
        raise _mismatch(key, "int", value)
    return int(value)


def _to_float(key: ColumnKey, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise _mismatch(key, "float", value)
    return float(value)


def _to_decimal(key: ColumnKey, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise _mismatch(key, "decimal", value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise _mismatch(key, "decimal", value) from exc


def _to_str(key: ColumnKey, value: Any) -> str:
    if not isinstance(value, str):
        raise _mismatch(key, "str", value)
    return value


def _to_bool(key: ColumnKey, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    # SQLite has no boolean storage class.
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise _mismatch(key, "bool", value)


def _to_bytes(key: ColumnKey, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise _mismatch(key, "bytes", value)


def _to_datetime(key: ColumnKey, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise _mismatch(key, "datetime", value) from exc
    raise _mismatch(key, "datetime", value)


def _to_date(key: ColumnKey, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise _mismatch(key, "date", value) from exc
    raise _mismatch(key, "date", value)


class RowSet:
    """Ordered, forward-only, single-pass sequence of :class:`Row`.

    The first thread that reads from a row set becomes its only consumer.
    Once exhausted, a row set cannot be traversed again; re-run the query
    instead.
    """

    def __init__(self, columns: Sequence[str], rows: Iterable[Row | Sequence[Any]]) -> None:
        self._columns = tuple(columns)
        self._source: Iterator[Row | Sequence[Any]] = iter(rows)
        self._pending: Row | None = None
        self._exhausted = False
        self._started = False
        self._consumer: int | None = None
        self._position = 0

    @classmethod
    def from_mappings(cls, records: Sequence[Mapping[str, Any]]) -> "RowSet":
        """Build a row set from dictionaries sharing the same keys."""

        columns: tuple[str, ...] = tuple(records[0].keys()) if records else ()
        return cls(columns, (tuple(r[c] for c in columns) for r in records))

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    @property
    def position(self) -> int:
        """Number of rows handed out so far."""

        return self._position

    def _claim(self) -> None:
        ident = threading.get_ident()
        if self._consumer is None:
            self._consumer = ident
        elif self._consumer != ident:
            raise IllegalStateError("row set is already being consumed by another thread")

    def _coerce(self, item: Row | Sequence[Any]) -> Row:
        if isinstance(item, Row):
            return item
        return Row(self._columns, item)

    def has_next(self) -> bool:
        self._claim()
        self._started = True
        if self._pending is not None:
            return True
        if self._exhausted:
            return False
        try:
            self._pending = self._coerce(next(self._source))
        except StopIteration:
            self._exhausted = True
            return False
        return True

    def next(self) -> Row:
        if not self.has_next():
            raise IllegalStateError("row set is exhausted")
        row = self._pending
        assert row is not None
        self._pending = None
        self._position += 1
        return row

    def __iter__(self) -> Iterator[Row]:
        if self._exhausted and self._pending is None and self._started:
            raise IllegalStateError("row set has already been traversed")
        return self._drain()

    def _drain(self) -> Iterator[Row]:
        while self.has_next():
            yield self.next()
