from __future__ import annotations

import threading

import pytest

from rowbound import (
    DataAccessError,
    ExtractionError,
    IllegalStateError,
    Propagation,
    QueryFacade,
    TransactionRunner,
    TransactionState,
    TransactionStatus,
)
from rowbound import extractors
from tests.mocks.engine import RecordingEngine

names = extractors.column("name")


def _names(facade: QueryFacade) -> list[str]:
    return facade.query_list("SELECT name FROM people ORDER BY id", None, names)


def _insert(facade: QueryFacade, status: TransactionStatus, person_id: int, name: str) -> None:
    facade.insert(
        "INSERT INTO people (id, name) VALUES (:id, :name)",
        {"id": person_id, "name": name},
        transaction=status,
    )


@pytest.mark.unit
def test_commit_on_normal_return(facade: QueryFacade) -> None:
    def unit_of_work(status: TransactionStatus) -> str:
        _insert(facade, status, 1, "Kasia")
        _insert(facade, status, 2, "Michal")
        assert facade.query_list("SELECT name FROM people", None, names, transaction=status) == [
            "Kasia",
            "Michal",
        ]
        return "done"

    assert facade.transaction(unit_of_work) == "done"
    assert _names(facade) == ["Kasia", "Michal"]


@pytest.mark.unit
def test_writes_are_invisible_outside_until_commit(facade: QueryFacade) -> None:
    observed: list[list[str]] = []

    def unit_of_work(status: TransactionStatus) -> None:
        _insert(facade, status, 1, "Kasia")
        observed.append(_names(facade))

    facade.transaction(unit_of_work)

    assert observed == [[]]
    assert _names(facade) == ["Kasia"]


@pytest.mark.unit
def test_rollback_only_discards_writes(facade: QueryFacade) -> None:
    def unit_of_work(status: TransactionStatus) -> None:
        _insert(facade, status, 1, "Kasia")
        status.set_rollback_only()
        status.set_rollback_only()
        assert status.is_rollback_only()

    facade.transaction(unit_of_work)

    assert _names(facade) == []


@pytest.mark.unit
def test_failure_rolls_back_and_surfaces_original_error(facade: QueryFacade) -> None:
    class Boom(Exception):
        pass

    def unit_of_work(status: TransactionStatus) -> None:
        _insert(facade, status, 1, "Kasia")
        raise Boom("write then fail")

    with pytest.raises(Boom, match="write then fail"):
        facade.transaction(unit_of_work)

    assert _names(facade) == []


@pytest.mark.unit
def test_constraint_violation_rolls_back_whole_unit(facade: QueryFacade) -> None:
    def unit_of_work(status: TransactionStatus) -> None:
        _insert(facade, status, 1, "Kasia")
        _insert(facade, status, 1, "Michal")

    with pytest.raises(DataAccessError):
        facade.transaction(unit_of_work)

    assert _names(facade) == []


@pytest.mark.unit
def test_status_is_unusable_after_run(facade: QueryFacade) -> None:
    captured: list[TransactionStatus] = []
    facade.transaction(captured.append)
    status = captured[0]

    assert status.is_completed()
    assert status.state is TransactionState.COMMITTED
    with pytest.raises(IllegalStateError):
        status.set_rollback_only()
    with pytest.raises(IllegalStateError):
        status.is_rollback_only()
    with pytest.raises(IllegalStateError):
        facade.query_list("SELECT name FROM people", None, names, transaction=status)
    with pytest.raises(IllegalStateError):
        facade.transaction(lambda inner: None, within=status)


@pytest.mark.unit
def test_status_is_confined_to_its_thread(facade: QueryFacade) -> None:
    errors: list[BaseException] = []

    def unit_of_work(status: TransactionStatus) -> None:
        def touch() -> None:
            try:
                status.set_rollback_only()
            except IllegalStateError as exc:
                errors.append(exc)

        worker = threading.Thread(target=touch)
        worker.start()
        worker.join()
        assert not status.is_rollback_only()

    facade.transaction(unit_of_work)

    assert len(errors) == 1


@pytest.mark.unit
def test_required_joins_enclosing_transaction(facade: QueryFacade) -> None:
    def inner(status: TransactionStatus) -> None:
        assert not status.is_new_transaction
        _insert(facade, status, 2, "Michal")
        raise ValueError("inner failed")

    def outer(status: TransactionStatus) -> None:
        assert status.is_new_transaction
        _insert(facade, status, 1, "Kasia")
        with pytest.raises(ValueError):
            facade.transaction(inner, within=status)
        assert status.is_rollback_only()

    facade.transaction(outer)

    assert _names(facade) == []


@pytest.mark.unit
def test_required_inner_rollback_only_dooms_outer(facade: QueryFacade) -> None:
    inner_statuses: list[TransactionStatus] = []

    def inner(status: TransactionStatus) -> None:
        inner_statuses.append(status)
        status.set_rollback_only()

    def outer(status: TransactionStatus) -> None:
        _insert(facade, status, 1, "Kasia")
        facade.transaction(inner, within=status)
        assert inner_statuses[0].is_completed()
        assert not status.is_completed()

    facade.transaction(outer)

    assert _names(facade) == []
    assert inner_statuses[0].state is TransactionState.ROLLED_BACK


@pytest.mark.unit
def test_requires_new_commits_independently(facade: QueryFacade) -> None:
    def inner(status: TransactionStatus) -> None:
        assert status.is_new_transaction
        _insert(facade, status, 1, "Kasia")

    def outer(status: TransactionStatus) -> None:
        facade.transaction(inner, within=status, propagation=Propagation.REQUIRES_NEW)
        _insert(facade, status, 2, "Michal")
        raise RuntimeError("outer failed")

    with pytest.raises(RuntimeError):
        facade.transaction(outer)

    assert _names(facade) == ["Kasia"]


@pytest.mark.unit
def test_runner_default_propagation_is_configurable() -> None:
    engine = RecordingEngine()
    runner = TransactionRunner(engine, propagation=Propagation.REQUIRES_NEW)

    runner.run(lambda outer: runner.run(lambda inner: None, within=outer))

    assert runner.propagation is Propagation.REQUIRES_NEW
    assert engine.events == ["begin:1", "begin:2", "commit:2", "commit:1"]


@pytest.mark.unit
def test_exactly_one_outcome_per_transaction() -> None:
    engine = RecordingEngine()
    runner = TransactionRunner(engine)

    runner.run(lambda status: None)
    runner.run(lambda status: status.set_rollback_only())
    with pytest.raises(KeyError):
        runner.run(lambda status: {}["missing"])

    assert engine.events == [
        "begin:1",
        "commit:1",
        "begin:2",
        "rollback:2",
        "begin:3",
        "rollback:3",
    ]
    assert [handle.outcome for handle in engine.handles] == [
        "committed",
        "rolled_back",
        "rolled_back",
    ]


@pytest.mark.unit
def test_rollback_failure_is_attached_to_original_error() -> None:
    engine = RecordingEngine(fail_on_rollback=True)
    runner = TransactionRunner(engine)
    captured: list[TransactionStatus] = []

    def unit_of_work(status: TransactionStatus) -> None:
        captured.append(status)
        raise LookupError("original cause")

    with pytest.raises(LookupError, match="original cause") as exc_info:
        runner.run(unit_of_work)

    notes = getattr(exc_info.value, "__notes__", [])
    assert any("rollback failed" in note for note in notes)
    assert captured[0].state is TransactionState.ROLLED_BACK


@pytest.mark.unit
def test_commit_failure_surfaces_as_data_access_error() -> None:
    engine = RecordingEngine(fail_on_commit=True)
    runner = TransactionRunner(engine)

    with pytest.raises(DataAccessError, match="commit"):
        runner.run(lambda status: None)

    assert engine.events == ["begin:1", "commit:1", "rollback:1"]


@pytest.mark.unit
def test_extraction_error_can_mark_transaction_rollback_only() -> None:
    engine = RecordingEngine(columns=("id",), rows=[("not-a-number",)])
    facade = QueryFacade(engine, rollback_on_extraction_error=True)

    def unit_of_work(status: TransactionStatus) -> None:
        with pytest.raises(ExtractionError):
            facade.query_one("SELECT id FROM t", None, lambda row: row.integer("id"), transaction=status)

    facade.transaction(unit_of_work)

    assert engine.events[-1] == "rollback:1"
    assert engine.statements[0][1] is engine.handles[0]


@pytest.mark.unit
def test_caught_extraction_error_commits_by_default() -> None:
    engine = RecordingEngine(columns=("id",), rows=[("not-a-number",)])
    facade = QueryFacade(engine)

    def unit_of_work(status: TransactionStatus) -> None:
        with pytest.raises(ExtractionError):
            facade.query_one("SELECT id FROM t", None, lambda row: row.integer("id"), transaction=status)

    facade.transaction(unit_of_work)

    assert engine.events[-1] == "commit:1"


@pytest.mark.unit
def test_interrupt_during_commit_is_not_rewrapped() -> None:
    engine = RecordingEngine(commit_error=KeyboardInterrupt())
    runner = TransactionRunner(engine)
    captured: list[TransactionStatus] = []

    with pytest.raises(KeyboardInterrupt):
        runner.run(captured.append)

    assert engine.events == ["begin:1", "commit:1", "rollback:1"]
    assert captured[0].state is TransactionState.ROLLED_BACK


@pytest.mark.unit
def test_transaction_states() -> None:
    assert [state.value for state in TransactionState] == ["ACTIVE", "COMMITTED", "ROLLED_BACK"]


@pytest.mark.unit
def test_second_traversal_marks_transaction_rollback_only_when_configured() -> None:
    engine = RecordingEngine(columns=("id",), rows=[(1,), (2,)])
    facade = QueryFacade(engine, rollback_on_extraction_error=True)

    def unit_of_work(status: TransactionStatus) -> None:
        with pytest.raises(ExtractionError):
            facade.query_aggregate(
                "SELECT id FROM t", None, lambda rows: ([*rows], [*rows]), transaction=status
            )

    facade.transaction(unit_of_work)

    assert engine.events[-1] == "rollback:1"
