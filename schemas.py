import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import InsuranceType
from money import MAX_AMOUNT_CENTS


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class SubCategoryIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class CoverageRuleIn(BaseModel):
    sub_category_id: int
    insurance_type: InsuranceType
    percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    max_amount_cents: Optional[int] = Field(default=None, ge=0, le=MAX_AMOUNT_CENTS)
    description: Optional[str] = Field(default=None, max_length=500)


class BudgetIn(BaseModel):
    sub_category_id: int
    year: int = Field(..., ge=1970, le=3000)
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sub_category_id: int
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)

