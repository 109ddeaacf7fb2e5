"""Transaction boundaries for caller-supplied units of work.

:class:`TransactionRunner` begins a physical transaction, hands a
:class:`TransactionStatus` to the unit of work and then commits or rolls
back. The enclosing transaction, if any, is passed explicitly through
``within=`` instead of being looked up from thread-local state.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

import structlog

from .engine import ExecutionEngine, TransactionHandle
from .exceptions import DataAccessError, IllegalStateError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

UnitOfWork = Callable[["TransactionStatus"], T]


class Propagation(str, enum.Enum):
    """How a nested ``run`` relates to the transaction passed as ``within``."""

    REQUIRED = "REQUIRED"
    REQUIRES_NEW = "REQUIRES_NEW"


class TransactionState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass(slots=True, eq=False)
class _PhysicalTransaction:
    """State shared by every status participating in one engine transaction."""

    handle: TransactionHandle
    state: TransactionState = TransactionState.ACTIVE
    rollback_only: bool = False


class TransactionStatus:
    """Handle given to a unit of work for the duration of one ``run`` call."""

    __slots__ = ("_transaction", "_new", "_local_rollback_only", "_completed", "_owner")

    def __init__(self, transaction: _PhysicalTransaction, *, new_transaction: bool) -> None:
        self._transaction = transaction
        self._new = new_transaction
        self._local_rollback_only = False
        self._completed = False
        self._owner = threading.get_ident()

    def __repr__(self) -> str:
        return (
            f"TransactionStatus(state={self.state.value}, new={self._new}, "
            f"completed={self._completed})"
        )

    def _check_usable(self) -> None:
        if self._completed:
            raise IllegalStateError("transaction status used after its transaction completed")
        if threading.get_ident() != self._owner:
            raise IllegalStateError("transaction status must not be shared across threads")

    @property
    def is_new_transaction(self) -> bool:
        """``False`` when this status joined an enclosing transaction."""

        return self._new

    @property
    def state(self) -> TransactionState:
        return self._transaction.state

    @property
    def handle(self) -> TransactionHandle:
        """Engine handle for statements that must run inside this transaction."""

        self._check_usable()
        return self._transaction.handle

    def is_rollback_only(self) -> bool:
        self._check_usable()
        return self._local_rollback_only or self._transaction.rollback_only

    def set_rollback_only(self) -> None:
        """Request rollback at completion; joined statuses doom the whole transaction."""

        self._check_usable()
        if self._new:
            self._local_rollback_only = True
        else:
            self._transaction.rollback_only = True

    def is_completed(self) -> bool:
        return self._completed

    def _complete(self) -> None:
        self._completed = True


class TransactionRunner:
    """Run units of work inside transaction boundaries."""

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        propagation: Propagation = Propagation.REQUIRED,
    ) -> None:
        self._engine = engine
        self._propagation = Propagation(propagation)

    @property
    def propagation(self) -> Propagation:
        return self._propagation

    def run(
        self,
        unit_of_work: UnitOfWork[T],
        *,
        within: TransactionStatus | None = None,
        propagation: Propagation | None = None,
    ) -> T:
        """Execute ``unit_of_work`` and return its result.

        With ``within`` and ``REQUIRED`` propagation the unit joins the
        enclosing transaction and only the outermost ``run`` commits or rolls
        back. Otherwise a new physical transaction is started.
        """

        mode = Propagation(propagation) if propagation is not None else self._propagation
        if within is not None:
            within._check_usable()
            if mode is Propagation.REQUIRED:
                return self._run_joined(unit_of_work, within)
        return self._run_new(unit_of_work)

    def _run_joined(self, unit_of_work: UnitOfWork[T], outer: TransactionStatus) -> T:
        transaction = outer._transaction
        status = TransactionStatus(transaction, new_transaction=False)
        logger.debug("transaction.join")
        try:
            return unit_of_work(status)
        except BaseException:
            transaction.rollback_only = True
            logger.debug("transaction.join.failed", rollback_only=True)
            raise
        finally:
            status._complete()

    def _run_new(self, unit_of_work: UnitOfWork[T]) -> T:
        handle = self._engine.begin_transaction()
        transaction = _PhysicalTransaction(handle=handle)
        status = TransactionStatus(transaction, new_transaction=True)
        logger.debug("transaction.begin")
        try:
            try:
                result = unit_of_work(status)
            except BaseException as exc:
                self._rollback_after_failure(transaction, exc)
                raise
            if status._local_rollback_only or transaction.rollback_only:
                self._rollback(transaction, reason="rollback_only")
            else:
                self._commit(transaction)
            return result
        finally:
            status._complete()

    def _commit(self, transaction: _PhysicalTransaction) -> None:
        try:
            self._engine.commit(transaction.handle)
        except BaseException as exc:
            transaction.state = TransactionState.ROLLED_BACK
            logger.error("transaction.commit.failed", error=repr(exc))
            self._rollback_quietly(transaction, exc)
            if isinstance(exc, DataAccessError) or not isinstance(exc, Exception):
                raise
            raise DataAccessError(f"commit failed: {exc}") from exc
        transaction.state = TransactionState.COMMITTED
        logger.debug("transaction.commit")

    def _rollback(self, transaction: _PhysicalTransaction, *, reason: str) -> None:
        try:
            self._engine.rollback(transaction.handle)
        finally:
            transaction.state = TransactionState.ROLLED_BACK
        logger.info("transaction.rollback", reason=reason)

    def _rollback_after_failure(
        self, transaction: _PhysicalTransaction, error: BaseException
    ) -> None:
        logger.info("transaction.rollback", reason="failure", error=repr(error))
        self._rollback_quietly(transaction, error)

    def _rollback_quietly(
        self, transaction: _PhysicalTransaction, error: BaseException
    ) -> None:
        """Roll back while keeping ``error`` as the failure the caller sees."""

        try:
            self._engine.rollback(transaction.handle)
        except Exception as rollback_error:
            logger.error(
                "transaction.rollback.failed",
                error=repr(rollback_error),
                original_error=repr(error),
            )
            error.add_note(f"rollback failed: {rollback_error!r}")
        finally:
            transaction.state = TransactionState.ROLLED_BACK


__all__ = [
    "Propagation",
    "TransactionRunner",
    "TransactionState",
    "TransactionStatus",
    "UnitOfWork",
]
