import pytest

from panelflow import State, WorkflowEngine
from panelflow.db import WorkflowDB


@pytest.mark.asyncio
async def test_workflow_db_lifecycle(tmp_path):
    db_path = tmp_path / "test.db"
    db = WorkflowDB(f"sqlite+aiosqlite:///{db_path}")
    await db.init_db()

    engine = WorkflowEngine()
    record = engine.initialize_workflow("P1", "CRS24F1236", 1)
    await db.save_record(record)
    await db.append_history(engine.latest_history_entry("P1"))

    record = engine.transition_workflow("P1", State.VALIDATED, {"operatorId": "op-3"})
    await db.save_record(record)
    await db.append_history(engine.latest_history_entry("P1"))

    stored = await db.get_record("P1")
    assert stored == record
    assert await db.get_record("missing") is None

    history = await db.get_history("P1")
    assert [e.to_state for e in history] == [State.SCANNED, State.VALIDATED]
    assert history[1].details == {"operator_id": "op-3"}

    records = await db.list_records()
    assert [r.panel_id for r in records] == ["P1"]
    await db.dispose()


@pytest.mark.asyncio
async def test_workflow_db_snapshot_restores_engine(tmp_path):
    db = WorkflowDB(f"sqlite+aiosqlite:///{tmp_path/'snap.db'}")

    engine = WorkflowEngine()
    for panel_id in ("A", "B"):
        await db.save_record(engine.initialize_workflow(panel_id, f"BC-{panel_id}", 2))
        await db.append_history(engine.latest_history_entry(panel_id))
    await db.save_record(engine.transition_workflow("B", State.FAILED))
    await db.append_history(engine.latest_history_entry("B"))

    snapshot = await db.load_snapshot()
    restored = WorkflowEngine.from_snapshot(snapshot)
    assert restored.get_workflow_state("B").current_state == State.FAILED
    assert len(restored.get_workflow_history("B")) == 2
    assert [r.panel_id for r in restored.get_active_workflows()] == ["A"]

    async with db.session() as session:
        from panelflow.db.models import PanelWorkflowRow

        row = await session.get(PanelWorkflowRow, "B")
        assert row.status == "FAILED"
        assert row.current_state == "FAILED"
    await db.dispose()


@pytest.mark.asyncio
async def test_workflow_db_keeps_record_timestamps(tmp_path):
    db = WorkflowDB(f"sqlite+aiosqlite:///{tmp_path/'times.db'}")

    engine = WorkflowEngine()
    record = engine.initialize_workflow("P1", "CRS24F1236", 1)
    await db.save_record(record)
    entry = engine.latest_history_entry("P1")
    await db.append_history(entry)
    assert record.updated_at.tzinfo is not None

    async with db.session() as session:
        from sqlmodel import select

        from panelflow.db.models import HistoryRow, PanelWorkflowRow

        row = await session.get(PanelWorkflowRow, "P1")
        # sqlite hands back naive values for timezone-aware columns
        assert row.updated_at.replace(tzinfo=None) == record.updated_at.replace(tzinfo=None)
        history_row = (await session.execute(select(HistoryRow))).scalars().one()
        assert history_row.recorded_at.replace(tzinfo=None) == entry.timestamp.replace(
            tzinfo=None
        )
    await db.dispose()
