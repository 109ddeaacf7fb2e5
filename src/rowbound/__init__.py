"""Typed query execution and transaction boundaries over SQLAlchemy Core.

Application code passes plain callables: extractors map rows to values and
units of work run inside :class:`TransactionRunner` boundaries.
"""

from .config import DataAccess, DataAccessSettings, build_data_access
from .engine import ExecutionEngine, SqlAlchemyEngine, UpdateResult
from .exceptions import (
    CardinalityError,
    DataAccessError,
    ExtractionError,
    IllegalStateError,
    IntegrityConstraintViolation,
    RowboundError,
)
from .extractors import Extractor, RowSetExtractor, create_extractor
from .facade import QueryFacade
from .rows import Row, RowSet
from .statements import Statement, params, params_list
from .transaction import (
    Propagation,
    TransactionRunner,
    TransactionState,
    TransactionStatus,
)

__all__ = [
    "CardinalityError",
    "DataAccess",
    "DataAccessError",
    "DataAccessSettings",
    "ExecutionEngine",
    "ExtractionError",
    "Extractor",
    "IllegalStateError",
    "IntegrityConstraintViolation",
    "Propagation",
    "QueryFacade",
    "Row",
    "RowSet",
    "RowSetExtractor",
    "RowboundError",
    "SqlAlchemyEngine",
    "Statement",
    "TransactionRunner",
    "TransactionState",
    "TransactionStatus",
    "UpdateResult",
    "build_data_access",
    "create_extractor",
    "params",
    "params_list",
]
