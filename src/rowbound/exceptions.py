"""Error taxonomy shared by the query facade and the transaction runner."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "RowboundError",
    "DataAccessError",
    "IntegrityConstraintViolation",
    "ExtractionError",
    "CardinalityError",
    "IllegalStateError",
    "handle_sqlalchemy_errors",
]


class RowboundError(Exception):
    """Base class for every error raised by this package."""


class DataAccessError(RowboundError):
    """Raised when the execution engine fails (connectivity, SQL, cancellation)."""

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class IntegrityConstraintViolation(DataAccessError):
    """Raised when a database constraint is violated."""


class ExtractionError(RowboundError):
    """Raised when a row or row set cannot be mapped to the requested value."""

    def __init__(self, message: str, *, row_number: int | None = None) -> None:
        super().__init__(message)
        self.row_number = row_number

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class CardinalityError(RowboundError):
    """Raised when a query returned a different number of rows than expected."""

    def __init__(self, *, expected: int, actual: int) -> None:
        super().__init__(f"expected {expected} row(s), got {actual}")
        self.expected = expected
        self.actual = actual


class IllegalStateError(RowboundError):
    """Raised when a row set or transaction status is used outside its lifetime."""


@dataclass(slots=True)
class _OperationContext:
    """Internal helper describing the failing operation for error messages."""

    operation: str | None = None

    def format(self, message: str) -> str:
        if self.operation:
            return f"{self.operation}: {message}"
        return message


def _translate_sqlalchemy_error(
    exc: sa_exc.SQLAlchemyError, *, context: _OperationContext
) -> DataAccessError:
    if isinstance(exc, sa_exc.IntegrityError):
        return IntegrityConstraintViolation(
            context.format(f"integrity constraint violated ({exc.orig})")
        )
    if isinstance(exc, sa_exc.DBAPIError):
        return DataAccessError(context.format(f"database operation failed ({exc.orig})"))
    return DataAccessError(context.format(str(exc)))


@contextmanager
def handle_sqlalchemy_errors(*, operation: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into :class:`DataAccessError`."""

    context = _OperationContext(operation)
    try:
        yield
    except sa_exc.SQLAlchemyError as exc:
        raise _translate_sqlalchemy_error(exc, context=context) from exc
