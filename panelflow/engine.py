"""Station workflow state machine.

``WorkflowEngine`` owns one ``WorkflowRecord`` per panel together with its
history. Records only change through the lifecycle operations below; each
successful operation appends exactly one history entry and a rejected one
changes nothing.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
)

from pydantic import BaseModel, ValidationError

from .constants import PRODUCTION_LINES
from .exceptions import ErrorCode, WorkflowError
from .history import WorkflowHistoryLog
from .models import (
    CompletionData,
    CriterionValue,
    EngineSnapshot,
    HistoryAction,
    HistoryEntry,
    InspectionData,
    InspectionOutcome,
    InspectionResult,
    ReworkData,
    State,
    StationId,
    TransitionContext,
    WorkflowRecord,
    WorkflowStatus,
    utcnow,
)
from .stations import STATION_CONFIGS, parse_station_id
from .validator import validate_inspection_criteria

if TYPE_CHECKING:
    from .config import PanelflowConfig

ProgressPolicy = Literal["retain", "reset"]

TRANSITIONS: Mapping[State, FrozenSet[State]] = MappingProxyType(
    {
        State.SCANNED: frozenset({State.VALIDATED, State.FAILED}),
        State.VALIDATED: frozenset({State.ASSEMBLY_EL, State.FAILED}),
        State.ASSEMBLY_EL: frozenset({State.FRAMING, State.FAILED, State.REWORK}),
        State.FRAMING: frozenset({State.JUNCTION_BOX, State.FAILED, State.REWORK}),
        State.JUNCTION_BOX: frozenset(
            {State.PERFORMANCE_FINAL, State.FAILED, State.REWORK}
        ),
        State.PERFORMANCE_FINAL: frozenset(
            {State.COMPLETED, State.FAILED, State.REWORK}
        ),
        State.FAILED: frozenset({State.REWORK, State.QUARANTINE}),
        State.REWORK: frozenset(
            config.workflow_step for config in STATION_CONFIGS.values()
        ),
        State.COMPLETED: frozenset(),
        State.QUARANTINE: frozenset(),
    }
)

MAIN_PATH = (
    State.SCANNED,
    State.VALIDATED,
    State.ASSEMBLY_EL,
    State.FRAMING,
    State.JUNCTION_BOX,
    State.PERFORMANCE_FINAL,
    State.COMPLETED,
)

_PROGRESS: Mapping[State, int] = MappingProxyType(
    {
        State.SCANNED: 0,
        State.VALIDATED: 0,
        State.ASSEMBLY_EL: 25,
        State.FRAMING: 50,
        State.JUNCTION_BOX: 75,
        State.PERFORMANCE_FINAL: 100,
        State.COMPLETED: 100,
    }
)

OFF_PATH_STATES = frozenset({State.FAILED, State.REWORK, State.QUARANTINE})
TERMINAL_STATES = frozenset({State.COMPLETED, State.QUARANTINE})


def _as_state(value: State | str) -> Optional[State]:
    if isinstance(value, State):
        return value
    try:
        return State(str(value).strip().upper())
    except ValueError:
        return None


def allowed_transitions(state: State | str) -> FrozenSet[State]:
    parsed = _as_state(state)
    return TRANSITIONS[parsed] if parsed is not None else frozenset()


def get_next_state(state: State | str) -> Optional[State]:
    """Successor of ``state`` along the main production path.

    Off-path and terminal states have no successor.
    """
    parsed = _as_state(state)
    if parsed not in MAIN_PATH or parsed == State.COMPLETED:
        return None
    return MAIN_PATH[MAIN_PATH.index(parsed) + 1]


def calculate_progress(state: State | str) -> int:
    """Percentage of the four production stations reached in ``state``.

    Unrecognised and off-path states report 0.
    """
    parsed = _as_state(state)
    if parsed is None:
        return 0
    return _PROGRESS.get(parsed, 0)


def status_for_state(state: State) -> WorkflowStatus:
    if state == State.COMPLETED:
        return WorkflowStatus.COMPLETED
    if state in (State.FAILED, State.QUARANTINE):
        return WorkflowStatus.FAILED
    return WorkflowStatus.ACTIVE


def next_actions(state: Optional[State], required_actions: Sequence[str] = ()) -> List[str]:
    """Operator guidance for a panel that just entered ``state``."""
    if state == State.COMPLETED:
        return ["Panel completed successfully", "Ready for packaging and shipping"]
    if state == State.FAILED:
        return [
            "Review failure reasons",
            "Determine rework or quarantine path",
            *required_actions,
        ]
    if state == State.REWORK:
        return ["Send panel to appropriate rework station", "Update workflow tracking"]
    if state == State.QUARANTINE:
        return ["Place panel in quarantine area", "Schedule quality review"]
    return ["Proceed to next station", "Update workflow status"]


class PanelLocks:
    """Per-panel mutual exclusion.

    Operations on the same panel are serialised; different panels never
    contend beyond the short registry lookup.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, panel_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(panel_id, threading.RLock())
        with lock:
            yield


def _parse(model: type[BaseModel], data: Any, what: str) -> Any:
    if data is None:
        return model()
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise WorkflowError(
            ErrorCode.VALIDATION_FAILED,
            f"Malformed {what}",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


class WorkflowEngine:
    """In-memory authority over panel workflow records."""

    def __init__(
        self,
        progress_policy: ProgressPolicy = "retain",
        max_rework_attempts: Optional[int] = None,
    ) -> None:
        if progress_policy not in ("retain", "reset"):
            raise ValueError(f"Unsupported progress policy: {progress_policy}")
        self.progress_policy = progress_policy
        self.max_rework_attempts = max_rework_attempts
        self._records: Dict[str, WorkflowRecord] = {}
        self._history = WorkflowHistoryLog()
        self._locks = PanelLocks()

    @classmethod
    def from_config(cls, config: "PanelflowConfig") -> "WorkflowEngine":
        return cls(
            progress_policy=config.workflow.progress_policy,
            max_rework_attempts=config.workflow.max_rework_attempts,
        )

    # ------------------------------------------------------------------
    # Snapshots
    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            records=[r.model_copy(deep=True) for r in self._records.values()],
            history=self._history.snapshot(),
        )

    def load_snapshot(self, snapshot: EngineSnapshot) -> None:
        """Replace the engine state with ``snapshot``."""
        self._records = {r.panel_id: r.model_copy(deep=True) for r in snapshot.records}
        self._history = WorkflowHistoryLog()
        for panel_id, entries in snapshot.history.items():
            self._history.load(panel_id, entries)

    @classmethod
    def from_snapshot(cls, snapshot: EngineSnapshot, **kwargs: Any) -> "WorkflowEngine":
        engine = cls(**kwargs)
        engine.load_snapshot(snapshot)
        return engine

    # ------------------------------------------------------------------
    # Helpers
    get_next_state = staticmethod(get_next_state)
    calculate_progress = staticmethod(calculate_progress)

    def _require(self, panel_id: str) -> WorkflowRecord:
        record = self._records.get(panel_id)
        if record is None:
            raise WorkflowError(
                ErrorCode.WORKFLOW_NOT_FOUND,
                "Panel workflow not found",
                panel_id=panel_id,
            )
        return record

    def _check_transition(self, record: WorkflowRecord, target: State | str) -> State:
        allowed = TRANSITIONS[record.current_state]
        parsed = _as_state(target)
        attempted = str(getattr(target, "value", target))
        if parsed is None or parsed not in allowed:
            raise WorkflowError(
                ErrorCode.INVALID_TRANSITION,
                f"Invalid transition from {record.current_state.value} to {attempted}",
                panel_id=record.panel_id,
                current_state=record.current_state.value,
                details={
                    "allowed_transitions": sorted(s.value for s in allowed),
                    "attempted_transition": attempted,
                },
            )
        return parsed

    def _progress_for(self, record: WorkflowRecord, target: State) -> int:
        if target in OFF_PATH_STATES and self.progress_policy == "retain":
            return record.workflow_progress
        return calculate_progress(target)

    def _apply_transition(
        self,
        record: WorkflowRecord,
        target: State,
        *,
        station_id: Optional[StationId] = None,
        operator_id: Optional[str] = None,
        criteria: Optional[Dict[str, CriterionValue]] = None,
        quality_score: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> WorkflowRecord:
        now = utcnow()
        updates: Dict[str, Any] = {
            "previous_state": record.current_state,
            "current_state": target,
            "next_state": get_next_state(target),
            "workflow_progress": self._progress_for(record, target),
            "status": status_for_state(target),
            "updated_at": now,
        }
        if station_id is not None:
            updates["station_id"] = station_id
        if operator_id is not None:
            updates["operator_id"] = operator_id
        if criteria:
            updates["criteria"] = {**record.criteria, **criteria}
        if quality_score is not None:
            updates["quality_score"] = quality_score
        if target == State.COMPLETED:
            updates["completed_at"] = now
            updates["final_quality_score"] = record.quality_score
        updates.update(extra or {})

        updated = record.model_copy(update=updates, deep=True)
        self._records[record.panel_id] = updated
        self._history.append(
            record.panel_id,
            HistoryAction.STATE_TRANSITION,
            from_state=record.current_state,
            to_state=target,
            details=details,
        )
        return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lifecycle
    def initialize_workflow(
        self, panel_id: str, barcode: str, line_number: int
    ) -> WorkflowRecord:
        """Create the workflow record of a freshly scanned panel."""
        if not panel_id:
            raise WorkflowError(ErrorCode.VALIDATION_FAILED, "panel_id is required")
        if (
            not isinstance(line_number, int)
            or isinstance(line_number, bool)
            or line_number not in PRODUCTION_LINES
        ):
            raise WorkflowError(
                ErrorCode.VALIDATION_FAILED,
                f"Unknown production line: {line_number}",
                panel_id=panel_id,
                details={"line_number": line_number},
            )

        with self._locks.hold(panel_id):
            if panel_id in self._records:
                raise WorkflowError(
                    ErrorCode.DUPLICATE_WORKFLOW,
                    "Panel workflow already exists",
                    panel_id=panel_id,
                    current_state=self._records[panel_id].current_state.value,
                )
            record = WorkflowRecord(panel_id=panel_id, barcode=barcode, line_number=line_number)
            self._records[panel_id] = record
            self._history.append(
                panel_id,
                HistoryAction.WORKFLOW_INITIALIZED,
                to_state=State.SCANNED,
                details={"barcode": barcode, "line_number": line_number},
            )
            return record.model_copy(deep=True)

    def validate_transition(self, panel_id: str, target_state: State | str) -> bool:
        """Check that ``target_state`` is reachable from the current state."""
        with self._locks.hold(panel_id):
            self._check_transition(self._require(panel_id), target_state)
        return True

    def transition_workflow(
        self,
        panel_id: str,
        target_state: State | str,
        context: TransitionContext | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        ctx = _parse(TransitionContext, context, "transition context")
        with self._locks.hold(panel_id):
            record = self._require(panel_id)
            target = self._check_transition(record, target_state)
            return self._apply_transition(
                record,
                target,
                station_id=ctx.station_id,
                operator_id=ctx.operator_id,
                details=ctx.model_dump(mode="json", exclude_none=True),
            )

    def process_inspection(
        self,
        panel_id: str,
        station_id: StationId | str,
        inspection_data: InspectionData | Dict[str, Any],
    ) -> InspectionOutcome:
        """Score an inspection and move the panel on (PASS) or to FAILED."""
        data: InspectionData = _parse(InspectionData, inspection_data, "inspection data")
        with self._locks.hold(panel_id):
            record = self._require(panel_id)
            station = parse_station_id(station_id)
            if station is None:
                raise WorkflowError(
                    ErrorCode.INVALID_STATION,
                    f"Station not found: {station_id}",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                )
            config = STATION_CONFIGS[station]
            if record.current_state != config.workflow_step:
                raise WorkflowError(
                    ErrorCode.INVALID_STATION,
                    f"Panel is not at {station.value}",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                    details={
                        "station_id": station.value,
                        "expected_state": config.workflow_step.value,
                    },
                )

            validation = validate_inspection_criteria(
                config, data.criteria, data.result, data.notes
            )
            if data.result == InspectionResult.PASS and not validation.is_valid:
                raise WorkflowError(
                    ErrorCode.VALIDATION_FAILED,
                    "Inspection declared PASS but required criteria failed",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                    details={
                        "quality_score": validation.quality_score,
                        "failure_reasons": [
                            f.model_dump(mode="json") for f in validation.failure_reasons
                        ],
                    },
                )

            if data.result == InspectionResult.PASS:
                target = config.next_step
                message = (
                    "Inspection passed, panel completed"
                    if target == State.COMPLETED
                    else "Inspection passed, proceeding to next station"
                )
            else:
                target = State.FAILED
                message = "Inspection failed, panel requires rework or quarantine"
            self._check_transition(record, target)

            extra: Dict[str, Any] = {}
            if target == State.COMPLETED:
                extra["final_quality_score"] = validation.quality_score
            details: Dict[str, Any] = {
                "station_id": station.value,
                "operator_id": data.operator_id,
                "inspection_result": data.result.value,
                "quality_score": validation.quality_score,
                "failure_reasons": [
                    f.model_dump(mode="json") for f in validation.failure_reasons
                ],
            }
            if data.notes:
                details["notes"] = data.notes

            updated = self._apply_transition(
                record,
                target,
                station_id=station,
                operator_id=data.operator_id,
                criteria=validation.criteria,
                quality_score=validation.quality_score,
                details=details,
                extra=extra,
            )

        failed = data.result == InspectionResult.FAIL
        return InspectionOutcome(
            result=data.result,
            workflow=updated,
            next_state=updated.current_state,
            workflow_progress=updated.workflow_progress,
            quality_score=validation.quality_score,
            failure_reasons=validation.failure_reasons if failed else [],
            required_actions=validation.required_actions if failed else [],
            next_actions=next_actions(
                updated.current_state, validation.required_actions if failed else []
            ),
            message=message,
        )

    def complete_workflow(
        self,
        panel_id: str,
        completion_data: CompletionData | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        """Mark a panel that passed final inspection as completed."""
        data: CompletionData = _parse(CompletionData, completion_data, "completion data")
        with self._locks.hold(panel_id):
            record = self._require(panel_id)
            if record.current_state != State.PERFORMANCE_FINAL:
                raise WorkflowError(
                    ErrorCode.INVALID_TRANSITION,
                    "Panel must be at final inspection to complete workflow",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                )
            score = (
                data.quality_score
                if data.quality_score is not None
                else record.quality_score
            )
            return self._apply_transition(
                record,
                State.COMPLETED,
                operator_id=data.operator_id,
                details=data.model_dump(mode="json", exclude_none=True)
                | {"final_quality_score": score},
                extra={"final_quality_score": score, "workflow_progress": 100},
            )

    def reset_workflow_for_rework(
        self,
        panel_id: str,
        target_station_id: StationId | str,
        rework_data: ReworkData | Dict[str, Any] | None = None,
    ) -> WorkflowRecord:
        """Send a panel back to the workflow step of ``target_station_id``."""
        data: ReworkData = _parse(ReworkData, rework_data, "rework data")
        with self._locks.hold(panel_id):
            record = self._require(panel_id)
            station = parse_station_id(target_station_id)
            if station is None:
                raise WorkflowError(
                    ErrorCode.INVALID_REWORK_STATION,
                    f"Invalid target station for rework: {target_station_id}",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                )
            if record.current_state in TERMINAL_STATES:
                raise WorkflowError(
                    ErrorCode.INVALID_TRANSITION,
                    f"Panel in terminal state {record.current_state.value} cannot be reworked",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                )
            if (
                self.max_rework_attempts is not None
                and record.rework_count >= self.max_rework_attempts
            ):
                raise WorkflowError(
                    ErrorCode.REWORK_LIMIT_EXCEEDED,
                    f"Panel reached the rework limit of {self.max_rework_attempts}",
                    panel_id=panel_id,
                    current_state=record.current_state.value,
                    details={"rework_count": record.rework_count},
                )

            target = STATION_CONFIGS[station].workflow_step
            updates: Dict[str, Any] = {
                "previous_state": record.current_state,
                "current_state": target,
                "next_state": get_next_state(target),
                "workflow_progress": calculate_progress(target),
                "status": WorkflowStatus.ACTIVE,
                "rework_count": record.rework_count + 1,
                "rework_reason": data.reason,
                "rework_notes": data.notes,
                "updated_at": utcnow(),
            }
            if data.operator_id is not None:
                updates["operator_id"] = data.operator_id
            updated = record.model_copy(update=updates, deep=True)
            self._records[panel_id] = updated
            self._history.append(
                panel_id,
                HistoryAction.REWORK_RESET,
                from_state=record.current_state,
                to_state=target,
                details={"target_station": station.value}
                | data.model_dump(mode="json", exclude_none=True),
            )
            return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Queries
    def get_workflow_state(self, panel_id: str) -> WorkflowRecord:
        with self._locks.hold(panel_id):
            return self._require(panel_id).model_copy(deep=True)

    def get_workflow_history(self, panel_id: str) -> List[HistoryEntry]:
        if panel_id not in self._history:
            raise WorkflowError(
                ErrorCode.WORKFLOW_NOT_FOUND,
                "Panel workflow history not found",
                panel_id=panel_id,
            )
        return self._history.entries(panel_id)

    def latest_history_entry(self, panel_id: str) -> Optional[HistoryEntry]:
        return self._history.latest(panel_id)

    def _records_snapshot(self) -> List[WorkflowRecord]:
        return [r.model_copy(deep=True) for r in list(self._records.values())]

    def get_active_workflows(self) -> List[WorkflowRecord]:
        return self.get_workflows_by_status(WorkflowStatus.ACTIVE)

    def get_workflows_by_status(
        self, status: WorkflowStatus | str
    ) -> List[WorkflowRecord]:
        try:
            wanted = WorkflowStatus(str(getattr(status, "value", status)).upper())
        except ValueError as exc:
            raise WorkflowError(
                ErrorCode.VALIDATION_FAILED, f"Unknown workflow status: {status}"
            ) from exc
        return [r for r in self._records_snapshot() if r.status == wanted]

    def get_workflows_by_station(self, station_id: StationId | str) -> List[WorkflowRecord]:
        """Active panels currently waiting at ``station_id``."""
        station = parse_station_id(station_id)
        if station is None:
            raise WorkflowError(
                ErrorCode.INVALID_STATION, f"Station not found: {station_id}"
            )
        step = STATION_CONFIGS[station].workflow_step
        return [
            r
            for r in self._records_snapshot()
            if r.status == WorkflowStatus.ACTIVE and r.current_state == step
        ]

    def get_workflow_statistics(self) -> Dict[str, Any]:
        records = self._records_snapshot()
        by_state = {state.value: 0 for state in State}
        by_status = {status.value: 0 for status in WorkflowStatus}
        for record in records:
            by_state[record.current_state.value] += 1
            by_status[record.status.value] += 1
        return {"total": len(records), "by_state": by_state, "by_status": by_status}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, panel_id: object) -> bool:
        return panel_id in self._records
