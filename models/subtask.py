# models/subtask.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional, Any
from datetime import datetime

from models.clock import UTCDateTime, utcnow
from models.status import Status


class Subtask(SQLModel, table=True):
    __tablename__ = "subtasks"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    title: str
    description: Optional[str] = None
    sequence_order: Optional[int] = None   # level; None counts as level 0
    assigned_to: int = Field(foreign_key="users.id", index=True)
    status: str = Field(default=Status.PENDING.value, index=True)
    start_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    deadline: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    feedback: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    returned_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def level(self) -> int:
        return self.sequence_order or 0
