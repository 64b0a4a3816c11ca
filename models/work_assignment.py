# models/work_assignment.py
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import date

from models.status import Status


class TaskWorkAssignment(SQLModel, table=True):
    """A user scheduled on a task or subtask for one calendar day."""
    __tablename__ = "task_work_assignments"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    work_date: date = Field(index=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    task_type: str = Field(default="task")          # task | subtask
    subtask_id: Optional[int] = Field(default=None, foreign_key="subtasks.id")
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id")
    estimated_duration: Optional[int] = None       # minutes
    status: str = Field(default=Status.PENDING.value)
