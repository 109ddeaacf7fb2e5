"""Typed query execution on top of an :class:`ExecutionEngine`."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence, TypeVar

import structlog

from .engine import ExecutionEngine, TransactionHandle
from .exceptions import CardinalityError, ExtractionError
from .extractors import (
    Extractor,
    RowSetExtractor,
    apply_row_extractor,
    apply_rowset_extractor,
)
from .statements import Statement, build_statement
from .transaction import Propagation, TransactionRunner, TransactionStatus, UnitOfWork

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Params = Sequence[Any] | Mapping[str, Any] | None


class QueryFacade:
    """Run queries and fold their rows into typed values.

    Every method accepts ``transaction=`` to run inside a unit of work; without
    it the statement runs on its own connection. Row sets never escape a call:
    results are fully extracted before returning.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        runner: TransactionRunner | None = None,
        rollback_on_extraction_error: bool = False,
    ) -> None:
        self._engine = engine
        self._runner = runner or TransactionRunner(engine)
        self._rollback_on_extraction_error = rollback_on_extraction_error

    @property
    def runner(self) -> TransactionRunner:
        return self._runner

    # Reads ----------------------------------------------------------------

    def query_one(
        self,
        sql: str | Statement,
        params: Params,
        extractor: Extractor[T],
        *,
        transaction: TransactionStatus | None = None,
    ) -> T:
        """Return the extracted value of the only row; otherwise :class:`CardinalityError`."""

        statement = build_statement(sql, params)
        handle = self._handle(transaction)
        with self._engine.execute(statement, handle) as rows:
            if not rows.has_next():
                raise CardinalityError(expected=1, actual=0)
            row = rows.next()
            if rows.has_next():
                extra = sum(1 for _ in rows)
                raise CardinalityError(expected=1, actual=1 + extra)
            return self._guard(transaction, apply_row_extractor, extractor, row, 1)

    def find_one(
        self,
        sql: str | Statement,
        params: Params,
        extractor: Extractor[T],
        *,
        transaction: TransactionStatus | None = None,
    ) -> T | None:
        """Return the extracted first row, or ``None`` when nothing matched."""

        statement = build_statement(sql, params)
        handle = self._handle(transaction)
        with self._engine.execute(statement, handle) as rows:
            if not rows.has_next():
                return None
            return self._guard(transaction, apply_row_extractor, extractor, rows.next(), 1)

    def query_list(
        self,
        sql: str | Statement,
        params: Params,
        extractor: Extractor[T],
        *,
        transaction: TransactionStatus | None = None,
    ) -> list[T]:
        """Extract every row in order; any failure discards the whole result."""

        statement = build_statement(sql, params)
        handle = self._handle(transaction)
        results: list[T] = []
        with self._engine.execute(statement, handle) as rows:
            for number, row in enumerate(rows, start=1):
                results.append(
                    self._guard(transaction, apply_row_extractor, extractor, row, number)
                )
        return results

    def query_aggregate(
        self,
        sql: str | Statement,
        params: Params,
        extractor: RowSetExtractor[T],
        *,
        transaction: TransactionStatus | None = None,
    ) -> T:
        """Fold the whole row set with a single call of ``extractor``."""

        statement = build_statement(sql, params)
        handle = self._handle(transaction)
        with self._engine.execute(statement, handle) as rows:
            return self._guard(transaction, apply_rowset_extractor, extractor, rows)

    # Writes ---------------------------------------------------------------

    def update(
        self,
        sql: str | Statement,
        params: Params = None,
        *,
        transaction: TransactionStatus | None = None,
    ) -> int:
        """Execute a write statement and return the number of affected rows."""

        statement = build_statement(sql, params)
        return self._engine.execute_update(statement, self._handle(transaction)).rowcount

    def insert(
        self,
        sql: str | Statement,
        params: Params = None,
        *,
        transaction: TransactionStatus | None = None,
    ) -> dict[str, Any]:
        """Execute an insert and return its generated keys."""

        statement = build_statement(sql, params)
        return self._engine.execute_update(statement, self._handle(transaction)).keys

    # Transactions ---------------------------------------------------------

    def transaction(
        self,
        unit_of_work: UnitOfWork[T],
        *,
        within: TransactionStatus | None = None,
        propagation: Propagation | None = None,
    ) -> T:
        return self._runner.run(unit_of_work, within=within, propagation=propagation)

    # Helpers --------------------------------------------------------------

    @staticmethod
    def _handle(transaction: TransactionStatus | None) -> TransactionHandle | None:
        if transaction is None:
            return None
        return transaction.handle

    def _guard(
        self,
        transaction: TransactionStatus | None,
        apply: Callable[..., T],
        *args: Any,
    ) -> T:
        try:
            return apply(*args)
        except ExtractionError as exc:
            logger.debug("query.extraction.failed", row_number=exc.row_number)
            if transaction is not None and self._rollback_on_extraction_error:
                transaction.set_rollback_only()
            raise


__all__ = ["QueryFacade"]
