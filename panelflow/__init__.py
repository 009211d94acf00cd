"""Panelflow: station workflow tracking for solar panel production lines."""

from .config import PanelflowConfig, load_config
from .engine import WorkflowEngine
from .exceptions import ErrorCode, WorkflowError
from .models import (
    CompletionData,
    HistoryEntry,
    InspectionData,
    InspectionOutcome,
    InspectionResult,
    ReworkData,
    State,
    StationId,
    TransitionContext,
    ValidationResult,
    WorkflowRecord,
    WorkflowStatus,
)
from .persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    WorkflowRepository,
    get_repository,
)
from .service import WorkflowService
from .stations import STATION_CONFIGS, get_station_config
from .validator import validate_inspection_criteria

__version__ = "0.1.0"

__all__ = [
    "WorkflowEngine",
    "WorkflowService",
    "WorkflowError",
    "ErrorCode",
    "State",
    "StationId",
    "WorkflowStatus",
    "InspectionResult",
    "WorkflowRecord",
    "HistoryEntry",
    "InspectionData",
    "InspectionOutcome",
    "TransitionContext",
    "CompletionData",
    "ReworkData",
    "ValidationResult",
    "STATION_CONFIGS",
    "get_station_config",
    "validate_inspection_criteria",
    "PanelflowConfig",
    "load_config",
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SQLiteWorkflowRepository",
    "get_repository",
]
