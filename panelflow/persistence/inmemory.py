"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, List

from ..models import EngineSnapshot, HistoryEntry, WorkflowRecord
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, WorkflowRecord] = {}
        self._history: Dict[str, List[HistoryEntry]] = {}

    # ------------------------------------------------------------------
    async def save_record(self, record: WorkflowRecord) -> None:
        self._records[record.panel_id] = record.model_copy(deep=True)

    async def append_history(self, entry: HistoryEntry) -> None:
        self._history.setdefault(entry.panel_id, []).append(entry)

    async def get_record(self, panel_id: str) -> WorkflowRecord | None:
        record = self._records.get(panel_id)
        return record.model_copy(deep=True) if record else None

    async def list_records(self) -> list[WorkflowRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    async def get_history(self, panel_id: str) -> list[HistoryEntry]:
        return list(self._history.get(panel_id, []))

    async def load_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            records=await self.list_records(),
            history={pid: list(entries) for pid, entries in self._history.items()},
        )
