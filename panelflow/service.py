"""Caller-side orchestration of the workflow engine and its repository."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .config import PanelflowConfig
from .engine import WorkflowEngine
from .exceptions import WorkflowError
from .models import (
    CompletionData,
    InspectionData,
    InspectionOutcome,
    ReworkData,
    State,
    StationId,
    TransitionContext,
    WorkflowRecord,
)
from .persistence import WorkflowRepository, get_repository

logger = logging.getLogger(__name__)


class WorkflowService:
    """Runs engine operations and persists what they produce.

    The engine stays the in-memory authority; after every successful
    mutation the updated record and its newest history entry are handed to
    the repository.
    """

    def __init__(
        self,
        engine: WorkflowEngine | None = None,
        repository: WorkflowRepository | None = None,
    ) -> None:
        self.engine = engine or WorkflowEngine()
        self._repository = repository or get_repository()

    @classmethod
    def from_config(cls, config: PanelflowConfig) -> "WorkflowService":
        return cls(
            engine=WorkflowEngine.from_config(config),
            repository=get_repository(config=config),
        )

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    async def restore(self) -> int:
        """Rehydrate the engine from the repository. Returns the record count."""
        snapshot = await self._repository.load_snapshot()
        self.engine.load_snapshot(snapshot)
        logger.info(f"Restored {len(snapshot.records)} panel workflows")
        return len(snapshot.records)

    async def _persist(self, record: WorkflowRecord) -> None:
        await self._repository.save_record(record)
        entry = self.engine.latest_history_entry(record.panel_id)
        if entry is not None:
            await self._repository.append_history(entry)

    def _log_rejection(self, operation: str, exc: WorkflowError) -> None:
        logger.warning(
            f"{operation} rejected for panel_id={exc.panel_id}: "
            f"{exc.code.value} {exc.message}"
        )

    # ------------------------------------------------------------------
    async def initialize_workflow(
        self, panel_id: str, barcode: str, line_number: int
    ) -> WorkflowRecord:
        try:
            record = self.engine.initialize_workflow(panel_id, barcode, line_number)
        except WorkflowError as exc:
            self._log_rejection("initialize_workflow", exc)
            raise
        await self._persist(record)
        logger.info(f"Initialized workflow for panel_id={panel_id} line={line_number}")
        return record

    async def transition_workflow(
        self,
        panel_id: str,
        target_state: State | str,
        context: TransitionContext | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        try:
            record = self.engine.transition_workflow(panel_id, target_state, context)
        except WorkflowError as exc:
            self._log_rejection("transition_workflow", exc)
            raise
        await self._persist(record)
        logger.info(
            f"Panel panel_id={panel_id} moved {record.previous_state.value} -> "
            f"{record.current_state.value}"
        )
        return record

    async def process_inspection(
        self,
        panel_id: str,
        station_id: StationId | str,
        inspection_data: InspectionData | Dict[str, Any],
    ) -> InspectionOutcome:
        try:
            outcome = self.engine.process_inspection(panel_id, station_id, inspection_data)
        except WorkflowError as exc:
            self._log_rejection("process_inspection", exc)
            raise
        await self._persist(outcome.workflow)
        logger.info(
            f"Inspection {outcome.result.value} for panel_id={panel_id} at "
            f"{outcome.workflow.station_id.value}: score={outcome.quality_score} "
            f"next={outcome.next_state.value if outcome.next_state else None}"
        )
        return outcome

    async def complete_workflow(
        self,
        panel_id: str,
        completion_data: CompletionData | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        try:
            record = self.engine.complete_workflow(panel_id, completion_data)
        except WorkflowError as exc:
            self._log_rejection("complete_workflow", exc)
            raise
        await self._persist(record)
        logger.info(
            f"Completed workflow for panel_id={panel_id} "
            f"final_quality_score={record.final_quality_score}"
        )
        return record

    async def reset_workflow_for_rework(
        self,
        panel_id: str,
        target_station_id: StationId | str,
        rework_data: ReworkData | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        try:
            record = self.engine.reset_workflow_for_rework(
                panel_id, target_station_id, rework_data
            )
        except WorkflowError as exc:
            self._log_rejection("reset_workflow_for_rework", exc)
            raise
        await self._persist(record)
        logger.info(
            f"Panel panel_id={panel_id} sent to {record.current_state.value} for rework "
            f"(rework_count={record.rework_count})"
        )
        return record

    def get_workflow_state(self, panel_id: str) -> WorkflowRecord:
        logger.debug(f"Reading workflow state for panel_id={panel_id}")
        return self.engine.get_workflow_state(panel_id)

    def get_workflow_statistics(self) -> Dict[str, Any]:
        return self.engine.get_workflow_statistics()


def create_service(config: Optional[PanelflowConfig] = None) -> WorkflowService:
    """Build a service from ``config`` (or the loaded configuration)."""
    from .config import load_config

    return WorkflowService.from_config(config or load_config())
