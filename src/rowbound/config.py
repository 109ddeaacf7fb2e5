"""Settings and wiring for the data-access layer.

Values come from ``ROWBOUND_*`` environment variables; the defaults target a
local SQLite file so the layer works without any configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .engine import SqlAlchemyEngine
from .facade import QueryFacade
from .logging import configure_logging
from .transaction import Propagation, TransactionRunner
from .urls import normalize_database_url

_ISOLATION_LEVELS = {
    "READ UNCOMMITTED",
    "READ COMMITTED",
    "REPEATABLE READ",
    "SERIALIZABLE",
}


class DataAccessSettings(BaseSettings):
    """Pydantic settings container for the data-access layer."""

    model_config = SettingsConfigDict(env_prefix="ROWBOUND_")

    database_url: str = Field(
        default="sqlite:///rowbound.db",
        description="SQLAlchemy URL or libpq keyword DSN of the backing database.",
    )
    propagation: Propagation = Field(
        default=Propagation.REQUIRED,
        description="Default propagation for nested transactional runs.",
    )
    isolation_level: str | None = Field(
        default=None,
        description="Isolation level applied to every transaction connection.",
    )
    rollback_on_extraction_error: bool = Field(
        default=False,
        description=(
            "Mark the enclosing transaction rollback-only when an extractor fails,"
            " even if the unit of work catches the error."
        ),
    )
    echo_sql: bool = Field(default=False, description="Log every emitted SQL statement.")
    log_level: str = Field(default="INFO", description="Root logging level.")
    log_json: bool = Field(default=True, description="Render structlog events as JSON.")

    @field_validator("database_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        return normalize_database_url(value)

    @field_validator("isolation_level")
    @classmethod
    def _check_isolation_level(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper().replace("_", " ")
        if normalized not in _ISOLATION_LEVELS:
            raise ValueError(f"unsupported isolation level {value!r}")
        return normalized


@dataclass(slots=True)
class DataAccess:
    """Engine, runner and facade built from one :class:`DataAccessSettings`."""

    settings: DataAccessSettings
    sqlalchemy_engine: Engine
    engine: SqlAlchemyEngine
    runner: TransactionRunner
    facade: QueryFacade

    def dispose(self) -> None:
        self.sqlalchemy_engine.dispose()


def build_data_access(
    settings: DataAccessSettings | None = None, *, configure_logs: bool = False
) -> DataAccess:
    """Create the SQLAlchemy engine and wire the data-access components."""

    settings = settings or DataAccessSettings()
    if configure_logs:
        configure_logging(settings.log_level, json=settings.log_json)
    sqlalchemy_engine = create_engine(settings.database_url, echo=settings.echo_sql)
    engine = SqlAlchemyEngine(sqlalchemy_engine, isolation_level=settings.isolation_level)
    runner = TransactionRunner(engine, propagation=settings.propagation)
    facade = QueryFacade(
        engine,
        runner=runner,
        rollback_on_extraction_error=settings.rollback_on_extraction_error,
    )
    return DataAccess(
        settings=settings,
        sqlalchemy_engine=sqlalchemy_engine,
        engine=engine,
        runner=runner,
        facade=facade,
    )


__all__ = ["DataAccess", "DataAccessSettings", "build_data_access"]
