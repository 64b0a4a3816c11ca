# models/project.py
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import date


class Project(SQLModel, table=True):
    __tablename__ = "projects"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
