import uuid
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field


MilestoneStatus = Literal["pending", "in_progress", "completed", "delayed"]


class MilestoneCreate(BaseModel):
    project_id: uuid.UUID
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[date] = None
    progress: int = Field(default=0, ge=0, le=100)
    status: MilestoneStatus = "pending"


class MilestoneUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[date] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    status: Optional[MilestoneStatus] = None
