"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any

from ..models import EngineSnapshot, HistoryEntry, WorkflowRecord
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist panel workflows using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS panel_workflows (
                panel_id TEXT PRIMARY KEY,
                barcode TEXT NOT NULL,
                line_number INTEGER NOT NULL,
                current_state TEXT NOT NULL,
                status TEXT NOT NULL,
                record TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                panel_id TEXT NOT NULL,
                action TEXT NOT NULL,
                from_state TEXT,
                to_state TEXT,
                entry TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_history_panel ON workflow_history (panel_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def save_record(self, record: WorkflowRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO panel_workflows
                (panel_id, barcode, line_number, current_state, status, record, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            record.panel_id,
            record.barcode,
            record.line_number,
            record.current_state.value,
            record.status.value,
            record.model_dump_json(),
            record.updated_at.isoformat(),
        )
        logger.debug(f"Saved workflow record panel_id={record.panel_id}")

    async def append_history(self, entry: HistoryEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_history
                (panel_id, action, from_state, to_state, entry, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            entry.panel_id,
            entry.action.value,
            entry.from_state.value if entry.from_state else None,
            entry.to_state.value if entry.to_state else None,
            entry.model_dump_json(),
            entry.timestamp.isoformat(),
        )

    async def get_record(self, panel_id: str) -> WorkflowRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT record FROM panel_workflows WHERE panel_id = ?",
            panel_id,
        )
        if not row:
            return None
        return WorkflowRecord.model_validate_json(row["record"])

    async def list_records(self) -> list[WorkflowRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT record FROM panel_workflows ORDER BY panel_id",
        )
        return [WorkflowRecord.model_validate_json(r["record"]) for r in rows]

    async def get_history(self, panel_id: str) -> list[HistoryEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT entry FROM workflow_history WHERE panel_id = ? ORDER BY id",
            panel_id,
        )
        return [HistoryEntry.model_validate_json(r["entry"]) for r in rows]

    async def load_snapshot(self) -> EngineSnapshot:
        records = await self.list_records()
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT panel_id, entry FROM workflow_history ORDER BY id",
        )
        history: dict[str, list[HistoryEntry]] = {}
        for row in rows:
            history.setdefault(row["panel_id"], []).append(
                HistoryEntry.model_validate_json(row["entry"])
            )
        logger.info(
            f"Loaded {len(records)} workflow records from {self.db_path}"
        )
        return EngineSnapshot(records=records, history=history)
