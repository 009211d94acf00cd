"""Append-only per-panel audit trail."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .models import HistoryAction, HistoryEntry, State


class WorkflowHistoryLog:
    """Ordered history of state changes, one sequence per panel.

    Entries are immutable and never removed; retention is the business of
    the persistence adapter.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[HistoryEntry]] = {}

    def append(
        self,
        panel_id: str,
        action: HistoryAction,
        from_state: Optional[State] = None,
        to_state: Optional[State] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            panel_id=panel_id,
            action=action,
            from_state=from_state,
            to_state=to_state,
            details=details or {},
        )
        self._entries.setdefault(panel_id, []).append(entry)
        return entry

    def entries(self, panel_id: str) -> List[HistoryEntry]:
        """Return a copy of the history of ``panel_id`` (oldest first)."""
        return list(self._entries.get(panel_id, []))

    def latest(self, panel_id: str) -> Optional[HistoryEntry]:
        entries = self._entries.get(panel_id)
        return entries[-1] if entries else None

    def load(self, panel_id: str, entries: Iterable[HistoryEntry]) -> None:
        """Seed history for ``panel_id`` when rehydrating from storage."""
        self._entries[panel_id] = list(entries)

    def __contains__(self, panel_id: object) -> bool:
        return panel_id in self._entries

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    def snapshot(self) -> Dict[str, List[HistoryEntry]]:
        return {panel_id: list(entries) for panel_id, entries in self._entries.items()}
