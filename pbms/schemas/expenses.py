import uuid
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ExpenseCreate(BaseModel):
    project_id: uuid.UUID
    category_id: uuid.UUID
    description: str = Field(min_length=1, max_length=1000)
    amount: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    expense_date: Optional[date] = None


class ExpenseUpdate(BaseModel):
    category_id: Optional[uuid.UUID] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    expense_date: Optional[date] = None


class ExpenseDecision(BaseModel):
    status: Literal["approved", "rejected"]
    comments: Optional[str] = None
