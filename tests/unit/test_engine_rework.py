import threading

import pytest

from panelflow import ErrorCode, State, WorkflowEngine, WorkflowError, WorkflowStatus
from panelflow.models import HistoryAction


def _engine_at(state: State, panel_id: str = "P1", **kwargs) -> WorkflowEngine:
    """Walk a panel along the main path until it reaches ``state``."""
    engine = WorkflowEngine(**kwargs)
    engine.initialize_workflow(panel_id, "CRS24F1236", 1)
    for step in (
        State.VALIDATED,
        State.ASSEMBLY_EL,
        State.FRAMING,
        State.JUNCTION_BOX,
        State.PERFORMANCE_FINAL,
    ):
        if engine.get_workflow_state(panel_id).current_state == state:
            break
        engine.transition_workflow(panel_id, step)
    return engine


def test_complete_workflow_from_final_inspection():
    engine = _engine_at(State.PERFORMANCE_FINAL)
    record = engine.complete_workflow("P1", {"qualityScore": 99.5, "operatorId": "qa-1"})

    assert record.current_state == State.COMPLETED
    assert record.status == WorkflowStatus.COMPLETED
    assert record.final_quality_score == 99.5
    assert record.workflow_progress == 100
    assert record.operator_id == "qa-1"
    assert record.completed_at is not None

    entry = engine.latest_history_entry("P1")
    assert entry.to_state == State.COMPLETED
    assert entry.details["final_quality_score"] == 99.5


def test_complete_workflow_defaults_to_record_score():
    engine = _engine_at(State.PERFORMANCE_FINAL)
    record = engine.complete_workflow("P1")
    assert record.final_quality_score is None
    assert record.current_state == State.COMPLETED


def test_complete_workflow_requires_final_inspection():
    engine = _engine_at(State.FRAMING)
    with pytest.raises(WorkflowError) as exc_info:
        engine.complete_workflow("P1")
    assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
    assert exc_info.value.current_state == "FRAMING"


def test_complete_unknown_panel():
    with pytest.raises(WorkflowError) as exc_info:
        WorkflowEngine().complete_workflow("missing")
    assert exc_info.value.code == ErrorCode.WORKFLOW_NOT_FOUND


def test_rework_resets_to_station_step():
    engine = _engine_at(State.JUNCTION_BOX)
    engine.transition_workflow("P1", State.FAILED)

    record = engine.reset_workflow_for_rework(
        "P1", "STATION_2", {"reason": "Frame misaligned", "notes": "left edge"}
    )

    assert record.current_state == State.FRAMING
    assert record.previous_state == State.FAILED
    assert record.next_state == State.JUNCTION_BOX
    assert record.workflow_progress == 50
    assert record.status == WorkflowStatus.ACTIVE
    assert record.rework_count == 1
    assert record.rework_reason == "Frame misaligned"
    assert record.rework_notes == "left edge"

    entry = engine.latest_history_entry("P1")
    assert entry.action == HistoryAction.REWORK_RESET
    assert entry.from_state == State.FAILED
    assert entry.to_state == State.FRAMING
    assert entry.details == {
        "target_station": "STATION_2",
        "reason": "Frame misaligned",
        "notes": "left edge",
    }


def test_rework_via_rework_state():
    engine = _engine_at(State.FRAMING)
    engine.transition_workflow("P1", State.REWORK)
    record = engine.transition_workflow("P1", State.ASSEMBLY_EL)
    assert record.current_state == State.ASSEMBLY_EL
    assert record.workflow_progress == 25


def test_rework_invalid_station():
    engine = _engine_at(State.FRAMING)
    with pytest.raises(WorkflowError) as exc_info:
        engine.reset_workflow_for_rework("P1", "STATION_7")
    assert exc_info.value.code == ErrorCode.INVALID_REWORK_STATION
    assert engine.get_workflow_state("P1").rework_count == 0


def test_rework_unknown_panel():
    with pytest.raises(WorkflowError) as exc_info:
        WorkflowEngine().reset_workflow_for_rework("missing", "STATION_1")
    assert exc_info.value.code == ErrorCode.WORKFLOW_NOT_FOUND


@pytest.mark.parametrize("terminal", [State.COMPLETED, State.QUARANTINE])
def test_rework_from_terminal_state_rejected(terminal):
    engine = _engine_at(State.PERFORMANCE_FINAL)
    if terminal == State.COMPLETED:
        engine.complete_workflow("P1")
    else:
        engine.transition_workflow("P1", State.FAILED)
        engine.transition_workflow("P1", State.QUARANTINE)

    with pytest.raises(WorkflowError) as exc_info:
        engine.reset_workflow_for_rework("P1", "STATION_1")
    assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
    assert engine.get_workflow_state("P1").current_state == terminal


def test_rework_limit():
    engine = _engine_at(State.FRAMING, max_rework_attempts=2)
    engine.reset_workflow_for_rework("P1", "STATION_1")
    engine.reset_workflow_for_rework("P1", "STATION_1")

    with pytest.raises(WorkflowError) as exc_info:
        engine.reset_workflow_for_rework("P1", "STATION_1")
    assert exc_info.value.code == ErrorCode.REWORK_LIMIT_EXCEEDED
    assert exc_info.value.details == {"rework_count": 2}


def test_queries_by_status_and_station():
    engine = WorkflowEngine()
    engine.initialize_workflow("A", "B-A", 1)
    engine.initialize_workflow("B", "B-B", 2)
    engine.initialize_workflow("C", "B-C", 1)
    for panel_id in ("A", "B"):
        engine.transition_workflow(panel_id, State.VALIDATED)
        engine.transition_workflow(panel_id, State.ASSEMBLY_EL)
    engine.transition_workflow("B", State.FAILED)

    assert {r.panel_id for r in engine.get_active_workflows()} == {"A", "C"}
    assert [r.panel_id for r in engine.get_workflows_by_status("failed")] == ["B"]
    assert [r.panel_id for r in engine.get_workflows_by_station("STATION_1")] == ["A"]
    assert engine.get_workflows_by_station("STATION_4") == []

    with pytest.raises(WorkflowError) as exc_info:
        engine.get_workflows_by_status("PAUSED")
    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
    with pytest.raises(WorkflowError) as exc_info:
        engine.get_workflows_by_station("STATION_0")
    assert exc_info.value.code == ErrorCode.INVALID_STATION

    stats = engine.get_workflow_statistics()
    assert stats["total"] == 3
    assert stats["by_status"] == {"ACTIVE": 2, "COMPLETED": 0, "FAILED": 1}
    assert stats["by_state"]["ASSEMBLY_EL"] == 1
    assert stats["by_state"]["SCANNED"] == 1
    assert stats["by_state"]["FAILED"] == 1


def test_history_for_unknown_panel():
    with pytest.raises(WorkflowError) as exc_info:
        WorkflowEngine().get_workflow_history("missing")
    assert exc_info.value.code == ErrorCode.WORKFLOW_NOT_FOUND


def test_history_is_ordered_and_complete():
    engine = _engine_at(State.FRAMING)
    engine.transition_workflow("P1", State.FAILED)
    engine.reset_workflow_for_rework("P1", "STATION_1")

    history = engine.get_workflow_history("P1")
    assert [e.to_state for e in history] == [
        State.SCANNED,
        State.VALIDATED,
        State.ASSEMBLY_EL,
        State.FRAMING,
        State.FAILED,
        State.ASSEMBLY_EL,
    ]
    for previous, entry in zip(history[1:], history[2:]):
        assert entry.from_state == previous.to_state
        assert entry.timestamp >= previous.timestamp


def test_snapshot_round_trip_restores_engine():
    engine = _engine_at(State.FRAMING, max_rework_attempts=3)
    snapshot = engine.snapshot()

    restored = WorkflowEngine.from_snapshot(snapshot, max_rework_attempts=3)
    assert restored.get_workflow_state("P1") == engine.get_workflow_state("P1")
    assert restored.get_workflow_history("P1") == engine.get_workflow_history("P1")

    restored.transition_workflow("P1", State.JUNCTION_BOX)
    assert engine.get_workflow_state("P1").current_state == State.FRAMING


def test_concurrent_inspections_for_same_panel_apply_once():
    engine = _engine_at(State.ASSEMBLY_EL)
    criteria = {
        "cellAlignment": True,
        "electricalConnection": True,
        "visualInspection": True,
    }
    results = []
    errors = []

    def _inspect():
        try:
            results.append(
                engine.process_inspection(
                    "P1", "STATION_1", {"result": "PASS", "criteria": criteria}
                )
            )
        except WorkflowError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_inspect) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert len(errors) == 7
    assert all(e.code == ErrorCode.INVALID_STATION for e in errors)
    assert engine.get_workflow_state("P1").current_state == State.FRAMING
    assert len(engine.get_workflow_history("P1")) == 4
