"""Data models shared by the workflow engine and its adapters."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class State(str, Enum):
    """Workflow states a panel moves through."""

    SCANNED = "SCANNED"
    VALIDATED = "VALIDATED"
    ASSEMBLY_EL = "ASSEMBLY_EL"
    FRAMING = "FRAMING"
    JUNCTION_BOX = "JUNCTION_BOX"
    PERFORMANCE_FINAL = "PERFORMANCE_FINAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REWORK = "REWORK"
    QUARANTINE = "QUARANTINE"


class StationId(str, Enum):
    STATION_1 = "STATION_1"
    STATION_2 = "STATION_2"
    STATION_3 = "STATION_3"
    STATION_4 = "STATION_4"


class WorkflowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class InspectionResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class HistoryAction(str, Enum):
    WORKFLOW_INITIALIZED = "WORKFLOW_INITIALIZED"
    STATE_TRANSITION = "STATE_TRANSITION"
    REWORK_RESET = "REWORK_RESET"


class CriterionType(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    PERCENTAGE = "percentage"
    TEXT = "text"


# ----------------------------------------------------------------------
# Typed criterion values


class BooleanCheck(BaseModel):
    """Pass/fail verdict recorded by the operator."""

    kind: Literal["boolean"] = "boolean"
    passed: bool


class Measurement(BaseModel):
    """Numeric reading compared against a nominal value within tolerance."""

    kind: Literal["number"] = "number"
    measured: float
    nominal: Optional[float] = None


class PercentageReading(BaseModel):
    """Ratio reading (0..1) compared against a minimum."""

    kind: Literal["percentage"] = "percentage"
    value: float


class Observation(BaseModel):
    """Free-form descriptive value, recorded but never scored."""

    kind: Literal["text"] = "text"
    value: str


CriterionValue = Annotated[
    Union[BooleanCheck, Measurement, PercentageReading, Observation],
    Field(discriminator="kind"),
]


# ----------------------------------------------------------------------
# Workflow records


class WorkflowRecord(BaseModel):
    """Current workflow position of a single panel."""

    panel_id: str
    barcode: str
    line_number: int
    current_state: State = State.SCANNED
    previous_state: Optional[State] = None
    next_state: Optional[State] = State.VALIDATED
    workflow_progress: int = Field(default=0, ge=0, le=100)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    station_id: Optional[StationId] = None
    operator_id: Optional[str] = None
    criteria: Dict[str, CriterionValue] = Field(default_factory=dict)
    quality_score: Optional[float] = None
    rework_count: int = 0
    rework_reason: Optional[str] = None
    rework_notes: Optional[str] = None
    final_quality_score: Optional[float] = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class HistoryEntry(BaseModel):
    """Immutable audit entry describing one state change."""

    model_config = ConfigDict(frozen=True)

    panel_id: str
    action: HistoryAction
    from_state: Optional[State] = None
    to_state: Optional[State] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# ----------------------------------------------------------------------
# Operation inputs


class InspectionData(BaseModel):
    """Inspection submitted by an operator at a station."""

    model_config = ConfigDict(populate_by_name=True)

    result: InspectionResult
    criteria: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    operator_id: Optional[str] = Field(default=None, alias="operatorId")

    @field_validator("result", mode="before")
    @classmethod
    def _normalise_result(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class TransitionContext(BaseModel):
    """Actor information merged into a record on transition."""

    model_config = ConfigDict(populate_by_name=True)

    station_id: Optional[StationId] = Field(default=None, alias="stationId")
    operator_id: Optional[str] = Field(default=None, alias="operatorId")


class CompletionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quality_score: Optional[float] = Field(default=None, alias="qualityScore")
    operator_id: Optional[str] = Field(default=None, alias="operatorId")
    notes: Optional[str] = None


class ReworkData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = None
    notes: Optional[str] = None
    operator_id: Optional[str] = Field(default=None, alias="operatorId")


# ----------------------------------------------------------------------
# Operation outputs


class FailureReason(BaseModel):
    criterion: str
    reason: str
    value: Any = None


class ValidationResult(BaseModel):
    """Outcome of scoring an inspection against a station configuration."""

    is_valid: bool
    quality_score: float
    passed_criteria: int
    total_criteria: int
    failure_reasons: List[FailureReason] = Field(default_factory=list)
    required_actions: List[str] = Field(default_factory=list)
    criteria: Dict[str, CriterionValue] = Field(default_factory=dict)


class InspectionOutcome(BaseModel):
    """What ``process_inspection`` hands back to the caller."""

    result: InspectionResult
    workflow: WorkflowRecord
    next_state: Optional[State] = None
    workflow_progress: int
    quality_score: float
    failure_reasons: List[FailureReason] = Field(default_factory=list)
    required_actions: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)
    message: str = ""


class EngineSnapshot(BaseModel):
    """Full engine state as handed to and from persistence adapters."""

    records: List[WorkflowRecord] = Field(default_factory=list)
    history: Dict[str, List[HistoryEntry]] = Field(default_factory=dict)
