import uuid
from typing import Optional

from pydantic import BaseModel, Field


class BusinessUnitCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    manager_id: Optional[uuid.UUID] = None


class BusinessUnitUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    manager_id: Optional[uuid.UUID] = None
