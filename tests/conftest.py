from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa

from rowbound import QueryFacade, SqlAlchemyEngine, TransactionRunner

PEOPLE_DDL = "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL, born TEXT)"


@pytest.fixture()
def sqlite_engine(tmp_path: Path) -> sa.Engine:
    """File-backed SQLite so committed writes are visible across connections."""

    engine = sa.create_engine(
        f"sqlite:///{tmp_path / 'people.sqlite'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    with engine.begin() as conn:
        conn.exec_driver_sql(PEOPLE_DDL)
    yield engine
    engine.dispose()


@pytest.fixture()
def engine(sqlite_engine: sa.Engine) -> SqlAlchemyEngine:
    return SqlAlchemyEngine(sqlite_engine)


@pytest.fixture()
def runner(engine: SqlAlchemyEngine) -> TransactionRunner:
    return TransactionRunner(engine)


@pytest.fixture()
def facade(engine: SqlAlchemyEngine, runner: TransactionRunner) -> QueryFacade:
    return QueryFacade(engine, runner=runner)


@pytest.fixture()
def two_people(sqlite_engine: sa.Engine) -> None:
    with sqlite_engine.begin() as conn:
        conn.exec_driver_sql(
            "INSERT INTO people (id, name, born) VALUES (1, 'Michal', '1990-04-01'),"
            " (2, 'Kasia', NULL)"
        )
