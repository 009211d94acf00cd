from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from ..models import utcnow


class PanelWorkflowRow(SQLModel, table=True):
    """Latest workflow record of a panel."""

    panel_id: str = Field(primary_key=True)
    barcode: str
    line_number: int
    current_state: str = Field(index=True)
    status: str = Field(index=True)
    record: dict = Field(sa_column=Column(JSON))
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class HistoryRow(SQLModel, table=True):
    """One entry of a panel's workflow history."""

    id: Optional[int] = Field(default=None, primary_key=True)
    panel_id: str = Field(index=True)
    action: str
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    entry: dict = Field(sa_column=Column(JSON))
    recorded_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
