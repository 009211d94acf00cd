from .models import HistoryRow, PanelWorkflowRow
from .workflow_db import WorkflowDB

__all__ = [
    "PanelWorkflowRow",
    "HistoryRow",
    "WorkflowDB",
]
