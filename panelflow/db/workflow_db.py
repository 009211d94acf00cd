from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..models import EngineSnapshot, HistoryEntry, WorkflowRecord
from .models import HistoryRow, PanelWorkflowRow

logger = logging.getLogger(__name__)


class WorkflowDB:
    """Async SQLAlchemy store for panel workflows.

    Works with any async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///panels.db``
    or ``postgresql+asyncpg://user:pw@host/db``. Tables are created on first
    use.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await self.init_db()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        await self._ensure_schema()
        async with AsyncSession(self.engine) as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Repository API
    async def save_record(self, record: WorkflowRecord) -> None:
        async with self.session() as session:
            row = await session.get(PanelWorkflowRow, record.panel_id)
            if row is None:
                row = PanelWorkflowRow(
                    panel_id=record.panel_id,
                    barcode=record.barcode,
                    line_number=record.line_number,
                    current_state=record.current_state.value,
                    status=record.status.value,
                    record=record.model_dump(mode="json"),
                )
            else:
                row.current_state = record.current_state.value
                row.status = record.status.value
                row.record = record.model_dump(mode="json")
            row.updated_at = record.updated_at
            session.add(row)
            await session.commit()
        logger.debug(f"Saved workflow record panel_id={record.panel_id}")

    async def append_history(self, entry: HistoryEntry) -> None:
        row = HistoryRow(
            panel_id=entry.panel_id,
            action=entry.action.value,
            from_state=entry.from_state.value if entry.from_state else None,
            to_state=entry.to_state.value if entry.to_state else None,
            entry=entry.model_dump(mode="json"),
            recorded_at=entry.timestamp,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()

    async def get_record(self, panel_id: str) -> WorkflowRecord | None:
        async with self.session() as session:
            row = await session.get(PanelWorkflowRow, panel_id)
            return WorkflowRecord.model_validate(row.record) if row else None

    async def list_records(self) -> list[WorkflowRecord]:
        async with self.session() as session:
            result = await session.execute(
                select(PanelWorkflowRow).order_by(PanelWorkflowRow.panel_id)
            )
            return [WorkflowRecord.model_validate(r.record) for r in result.scalars()]

    async def get_history(self, panel_id: str) -> list[HistoryEntry]:
        async with self.session() as session:
            result = await session.execute(
                select(HistoryRow)
                .where(HistoryRow.panel_id == panel_id)
                .order_by(HistoryRow.id)
            )
            return [HistoryEntry.model_validate(r.entry) for r in result.scalars()]

    async def load_snapshot(self) -> EngineSnapshot:
        records = await self.list_records()
        history: dict[str, list[HistoryEntry]] = {}
        async with self.session() as session:
            result = await session.execute(select(HistoryRow).order_by(HistoryRow.id))
            for row in result.scalars():
                history.setdefault(row.panel_id, []).append(
                    HistoryEntry.model_validate(row.entry)
                )
        logger.info(f"Loaded {len(records)} workflow records from database")
        return EngineSnapshot(records=records, history=history)
