import uuid
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class BudgetCategoryCreate(BaseModel):
    project_id: uuid.UUID
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    allocated_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=15, decimal_places=2)


class BudgetCategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    allocated_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)


class BudgetVersionCreate(BaseModel):
    project_id: uuid.UUID
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    status: Literal["draft", "pending"] = "draft"


class BudgetVersionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    status: Optional[Literal["draft", "pending"]] = None


class BudgetVersionDecision(BaseModel):
    status: Literal["approved", "rejected"] = "approved"
