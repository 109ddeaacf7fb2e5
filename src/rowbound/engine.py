"""Execution engine boundary and its SQLAlchemy Core implementation."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, ContextManager, Iterator, Protocol

import sqlalchemy as sa
import structlog
from sqlalchemy.engine import Connection, CursorResult, Engine, RootTransaction

from .exceptions import IllegalStateError, handle_sqlalchemy_errors
from .rows import Row, RowSet
from .statements import Statement

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class UpdateResult:
    """Outcome of a write statement."""

    rowcount: int
    keys: dict[str, Any] = field(default_factory=dict)


class TransactionHandle(Protocol):
    """Opaque engine-side reference to one physical transaction."""

    @property
    def is_open(self) -> bool:
        """Return ``True`` until the transaction is committed or rolled back."""

        raise NotImplementedError


class ExecutionEngine(Protocol):
    """Operations the query facade and the transaction runner rely on."""

    def execute(
        self, statement: Statement, handle: TransactionHandle | None = None
    ) -> ContextManager[RowSet]:
        """Run a query; the row set is only valid inside the context."""

        raise NotImplementedError

    def execute_update(
        self, statement: Statement, handle: TransactionHandle | None = None
    ) -> UpdateResult:
        """Run a write statement and report affected rows and generated keys."""

        raise NotImplementedError

    def begin_transaction(self) -> TransactionHandle:
        """Open a new physical transaction."""

        raise NotImplementedError

    def commit(self, handle: TransactionHandle) -> None:
        raise NotImplementedError

    def rollback(self, handle: TransactionHandle) -> None:
        raise NotImplementedError


@dataclass(slots=True, eq=False)
class SqlAlchemyTransactionHandle:
    """Connection and transaction owned by one physical transaction."""

    connection: Connection
    transaction: RootTransaction

    @property
    def is_open(self) -> bool:
        return self.transaction.is_active and not self.connection.closed


class SqlAlchemyEngine(ExecutionEngine):
    """Execute statements through a SQLAlchemy :class:`Engine`.

    Positional statements are sent with ``exec_driver_sql`` so the driver's
    own paramstyle applies; named statements go through :func:`sqlalchemy.text`.
    Statements without a transaction handle run on a short-lived connection
    (writes are committed immediately).
    """

    def __init__(self, engine: Engine, *, isolation_level: str | None = None) -> None:
        self._engine = engine
        self._isolation_level = isolation_level

    @property
    def engine(self) -> Engine:
        return self._engine

    # Statement execution -------------------------------------------------

    @staticmethod
    def _run(connection: Connection, statement: Statement) -> CursorResult[Any]:
        if statement.is_named:
            return connection.execute(sa.text(statement.sql), dict(statement.params))
        if statement.params:
            return connection.exec_driver_sql(statement.sql, tuple(statement.params))
        return connection.exec_driver_sql(statement.sql)

    @staticmethod
    def _connection_for(handle: TransactionHandle | None) -> Connection | None:
        if handle is None:
            return None
        if not isinstance(handle, SqlAlchemyTransactionHandle):
            raise TypeError(f"unsupported transaction handle {type(handle).__name__}")
        if not handle.is_open:
            raise IllegalStateError("transaction is no longer open")
        return handle.connection

    @contextmanager
    def _connection(self, handle: TransactionHandle | None, *, write: bool) -> Iterator[Connection]:
        bound = self._connection_for(handle)
        if bound is not None:
            yield bound
            return
        with handle_sqlalchemy_errors(operation="connection"):
            scope = self._engine.begin() if write else self._engine.connect()
            with scope as connection:
                yield connection

    @contextmanager
    def execute(
        self, statement: Statement, handle: TransactionHandle | None = None
    ) -> Iterator[RowSet]:
        logger.debug("query.execute", sql=statement.sql, in_transaction=handle is not None)
        with self._connection(handle, write=False) as connection:
            with handle_sqlalchemy_errors(operation="query"):
                result = self._run(connection, statement)
                if not result.returns_rows:
                    result.close()
                    raise sa.exc.ResourceClosedError(
                        "statement did not return rows; use update() or insert()"
                    )
                columns = list(result.keys())
            try:
                yield RowSet(columns, _stream(result, columns))
            finally:
                result.close()

    def execute_update(
        self, statement: Statement, handle: TransactionHandle | None = None
    ) -> UpdateResult:
        logger.debug("update.execute", sql=statement.sql, in_transaction=handle is not None)
        with self._connection(handle, write=True) as connection:
            with handle_sqlalchemy_errors(operation="update"):
                result = self._run(connection, statement)
                rowcount = result.rowcount
                keys: dict[str, Any] = {}
                if result.returns_rows:
                    returned = result.mappings().first()
                    if returned is not None:
                        keys = dict(returned)
                else:
                    lastrowid = getattr(result, "lastrowid", None)
                    if lastrowid:
                        keys = {"lastrowid": lastrowid}
                    result.close()
        return UpdateResult(rowcount=rowcount, keys=keys)

    # Transactions --------------------------------------------------------

    def begin_transaction(self) -> SqlAlchemyTransactionHandle:
        with handle_sqlalchemy_errors(operation="begin transaction"):
            connection = self._engine.connect()
            try:
                if self._isolation_level:
                    connection.execution_options(isolation_level=self._isolation_level)
                transaction = connection.begin()
            except BaseException:
                connection.close()
                raise
        return SqlAlchemyTransactionHandle(connection=connection, transaction=transaction)

    def commit(self, handle: TransactionHandle) -> None:
        sa_handle = self._require_handle(handle)
        try:
            with handle_sqlalchemy_errors(operation="commit"):
                sa_handle.transaction.commit()
        finally:
            sa_handle.connection.close()

    def rollback(self, handle: TransactionHandle) -> None:
        sa_handle = self._require_handle(handle)
        try:
            with handle_sqlalchemy_errors(operation="rollback"):
                sa_handle.transaction.rollback()
        finally:
            sa_handle.connection.close()

    @staticmethod
    def _require_handle(handle: TransactionHandle) -> SqlAlchemyTransactionHandle:
        if not isinstance(handle, SqlAlchemyTransactionHandle):
            raise TypeError(f"unsupported transaction handle {type(handle).__name__}")
        return handle


def _stream(result: CursorResult[Any], columns: list[str]) -> Iterator[Row]:
    with handle_sqlalchemy_errors(operation="fetch"):
        for record in result:
            yield Row(columns, tuple(record))


__all__ = [
    "ExecutionEngine",
    "SqlAlchemyEngine",
    "SqlAlchemyTransactionHandle",
    "TransactionHandle",
    "UpdateResult",
]
