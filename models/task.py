# models/task.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional, List, Any
from datetime import datetime

from models.clock import UTCDateTime, utcnow
from models.status import Status


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id", index=True)
    title: str
    description: Optional[str] = None
    is_sequential: bool = Field(default=False)
    # stored projection for tasks with subtasks, writable only for leaf tasks
    status: str = Field(default=Status.PENDING.value, index=True)
    assigned_users: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    start_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    deadline: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    feedback: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    returned_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
