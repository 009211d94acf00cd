"""Error types raised by the workflow engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable reason attached to every ``WorkflowError``."""

    DUPLICATE_WORKFLOW = "DUPLICATE_WORKFLOW"
    WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATION = "INVALID_STATION"
    INVALID_REWORK_STATION = "INVALID_REWORK_STATION"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    REWORK_LIMIT_EXCEEDED = "REWORK_LIMIT_EXCEEDED"


class WorkflowError(Exception):
    """Raised when a workflow operation is rejected.

    A rejected operation never leaves a partial mutation behind; the record
    and its history are exactly as they were before the call.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        panel_id: Optional[str] = None,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.panel_id = panel_id
        self.current_state = current_state
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON friendly representation of the error."""
        return {
            "code": self.code.value,
            "message": self.message,
            "panel_id": self.panel_id,
            "current_state": self.current_state,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
