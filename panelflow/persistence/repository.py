"""Repository abstraction for panel workflow persistence."""

from __future__ import annotations

from typing import Protocol

from ..models import EngineSnapshot, HistoryEntry, WorkflowRecord


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    The engine never calls a repository itself; callers hand over the
    updated record and the newest history entry after each mutating call
    and rehydrate the engine from ``load_snapshot`` on startup.
    """

    async def save_record(self, record: WorkflowRecord) -> None:
        """Insert or replace the record of ``record.panel_id``."""

    async def append_history(self, entry: HistoryEntry) -> None:
        """Append one history entry."""

    async def get_record(self, panel_id: str) -> WorkflowRecord | None:
        """Retrieve the stored record of a panel."""

    async def list_records(self) -> list[WorkflowRecord]:
        """Return all stored records."""

    async def get_history(self, panel_id: str) -> list[HistoryEntry]:
        """Return the history of a panel, oldest first."""

    async def load_snapshot(self) -> EngineSnapshot:
        """Return every record and history entry for engine rehydration."""
