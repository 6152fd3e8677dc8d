import uuid
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


ProjectStatus = Literal["planning", "active", "on-hold", "completed", "cancelled"]
TeamRole = Literal["member", "lead", "admin", "project_admin"]


class ProjectBase(BaseModel):
    description: Optional[str] = None
    department: Optional[str] = None
    business_unit_id: Optional[uuid.UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("description", "department", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("business_unit_id", mode="before")
    @classmethod
    def blank_id(cls, v):
        return v or None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectCreate(ProjectBase):
    name: str = Field(min_length=1, max_length=255)
    total_budget: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    allocated_budget: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: ProjectStatus = "planning"
    project_manager_id: Optional[uuid.UUID] = None


class ProjectUpdate(ProjectBase):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    total_budget: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    allocated_budget: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    status: Optional[ProjectStatus] = None
    project_manager_id: Optional[uuid.UUID] = None


class TeamMemberAdd(BaseModel):
    project_id: uuid.UUID
    user_id: uuid.UUID
    role: TeamRole = "member"


class TeamRoleUpdate(BaseModel):
    role: TeamRole


class ProjectAdminAssign(BaseModel):
    user_id: uuid.UUID
