import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Frequency, TransactionKind, TransactionType


class DeleteScope(str, Enum):
    occurrence = "occurrence"
    all = "all"


class RecurringDefinitionIn(BaseModel):
    type: TransactionType
    category_id: int
    subcategory_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    frequency: Frequency
    interval: int = Field(default=1, gt=0)
    start_date: dt.date
    end_date: Optional[dt.date] = None
    occurrences: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True


class RecurringDefinitionUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    frequency: Optional[Frequency] = None
    interval: Optional[int] = Field(default=None, gt=0)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    occurrences: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    propagate: bool = False


class RecurringDefinitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    category_id: int
    subcategory_id: Optional[int]
    amount: Decimal
    description: Optional[str]
    payment_method: Optional[str]
    frequency: Frequency
    interval: int
    start_date: dt.date
    end_date: Optional[dt.date]
    occurrences: Optional[int]
    is_active: bool
    next_due_date: Optional[dt.date]


class InstallmentPlanIn(BaseModel):
    category_id: int
    subcategory_id: int
    total_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    number_of_installments: int = Field(..., ge=2)
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    first_payment_date: dt.date


class InstallmentPlanUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    is_completed: Optional[bool] = None
    # Accepted only so that attempts to change them can be refused explicitly.
    total_amount: Optional[Decimal] = None
    number_of_installments: Optional[int] = None


class InstallmentPlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    subcategory_id: Optional[int]
    total_amount: Decimal
    number_of_installments: int
    installment_amount: Decimal
    description: Optional[str]
    payment_method: Optional[str]
    first_payment_date: dt.date
    is_completed: bool


class TransactionIn(BaseModel):
    type: TransactionType
    category_id: int
    subcategory_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    kind: TransactionKind
    category_id: int
    subcategory_id: Optional[int]
    amount: Decimal
    date: dt.date
    occurrence_date: Optional[dt.date]
    description: Optional[str]
    payment_method: Optional[str]
    is_processed: bool
    definition_id: Optional[int]
    plan_id: Optional[int]


class BudgetProfileIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: bool = False


class BudgetProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    is_active: bool


class BudgetAllocationIn(BaseModel):
    profile_id: int
    subcategory_id: int
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    allocated_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class BudgetAllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    profile_id: int
    subcategory_id: int
    year: int
    month: int
    allocated_amount: Decimal


class BudgetStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allocation_id: Optional[int]
    subcategory_id: int
    year: int
    month: int
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
