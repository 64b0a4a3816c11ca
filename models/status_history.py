# models/status_history.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional, Any
from datetime import datetime

from models.clock import UTCDateTime, utcnow


class StatusHistory(SQLModel, table=True):
    __tablename__ = "status_history"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: Optional[int] = Field(default=None, index=True)
    subtask_id: Optional[int] = Field(default=None, index=True)
    changed_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)
    changed_by: Optional[int] = None
    previous_status: Optional[str] = None
    new_status: str
    details: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
