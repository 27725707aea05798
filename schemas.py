"""Pydantic schemas for API payloads, validation, and derived views."""
from typing import Optional
from decimal import Decimal
import datetime as dt

from pydantic import field_validator, BaseModel, ConfigDict, EmailStr, Field, constr

from models import Frequency
from utils import normalize_iso_date, normalize_iso_datetime

NAME_MAX_LEN = 50
DESCRIPTION_MAX_LEN = 300
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


# Category schemas

class CategoryCreate(BaseModel):
    """Payload for creating a budget category."""
    name: constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)
    icon: str = Field(default="📝", max_length=16)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    monthly_budget: Decimal = Field(default=Decimal("0"), ge=0)


class CategoryUpdate(BaseModel):
    """Partial update payload for a category."""
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    monthly_budget: Optional[Decimal] = Field(default=None, ge=0)


class CategoryRead(BaseModel):
    """Response model for a category."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    icon: str
    color: str
    monthly_budget: float


# Expense schemas

class DescriptionMixin:
    """Shared validator trimming free-text descriptions."""
    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v):
        return v.strip() if isinstance(v, str) else v


class ExpenseDateMixin(DescriptionMixin):
    """Accepts plain dates, datetimes and ISO strings for the expense date."""
    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        if v is None:
            return None
        return normalize_iso_datetime(v)


class ExpenseCreate(ExpenseDateMixin, BaseModel):
    """Payload for creating an expense. A missing date means 'now'."""
    amount: Decimal = Field(gt=0)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LEN)
    date: Optional[dt.datetime] = None
    category_id: int


class ExpenseUpdate(ExpenseDateMixin, BaseModel):
    """Partial update payload for an expense."""
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LEN)
    date: Optional[dt.datetime] = None
    category_id: Optional[int] = None


class ExpenseRead(BaseModel):
    """An expense flattened with the display fields of its category."""
    id: int
    amount: float
    description: str
    date: dt.datetime
    category_id: int
    category_name: str
    category_icon: str
    category_color: str


class RecurringDateMixin(DescriptionMixin):
    @field_validator("next_date", mode="before")
    @classmethod
    def normalize_next_date(cls, v):
        if v is None:
            return None
        return normalize_iso_date(v)


class RecurringExpenseCreate(RecurringDateMixin, BaseModel):
    """Payload for creating a recurring expense template."""
    amount: Decimal = Field(gt=0)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LEN)
    category_id: int
    frequency: Frequency = Frequency.monthly
    next_date: dt.date


class RecurringExpenseUpdate(RecurringDateMixin, BaseModel):
    """Partial update payload for a recurring expense template."""
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LEN)
    category_id: Optional[int] = None
    frequency: Optional[Frequency] = None
    next_date: Optional[dt.date] = None


class RecurringExpenseRead(BaseModel):
    id: int
    amount: float
    description: str
    frequency: Frequency
    next_date: dt.date
    category_id: int
    category_name: str
    category_icon: str
    category_color: str


# Profile & onboarding schemas

class ProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    name: str
    monthly_income: float
    savings_goal: float
    is_onboarded: bool


class ProfileUpdate(BaseModel):
    """Partial update payload for the profile."""
    name: Optional[str] = Field(default=None, max_length=NAME_MAX_LEN)
    monthly_income: Optional[Decimal] = Field(default=None, ge=0)
    savings_goal: Optional[Decimal] = Field(default=None, ge=0)
    is_onboarded: Optional[bool] = None


class OnboardingPayload(BaseModel):
    """Income, savings goal and the starting set of categories."""
    monthly_income: Decimal = Field(ge=0)
    savings_goal: Decimal = Field(ge=0)
    categories: list[CategoryCreate] = Field(min_length=1)


# User & Auth schemas

class UserRegister(BaseModel):
    """Payload for signing up."""
    name: constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)
    email: EmailStr
    password: str = Field(min_length=6, max_length=256)


class UserLogin(BaseModel):
    """Payload for signing in."""
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    created_at: dt.datetime


class Token(BaseModel):
    """Token response model."""
    access_token: str
    token_type: str = "bearer"
    is_onboarded: bool = False


# Derived aggregates (never persisted)

class BudgetSummary(BaseModel):
    total_budget: float
    total_spent: float
    remaining: float
    percentage: float
    is_over_budget: bool


class CategoryProgress(BaseModel):
    id: int
    name: str
    icon: str
    color: str
    monthly_budget: float
    spent: float
    percentage: float
    remaining: float
    is_over_budget: bool


class CategorySlice(BaseModel):
    """One slice of the spending-by-category pie."""
    category_id: int
    name: str
    color: str
    value: float


class TrendSeries(BaseModel):
    labels: list[str]
    values: list[float]


class SpendingSummary(BaseModel):
    total_spent: float
    avg_per_day: float
    most_expensive_category: str
    most_expensive_day: str
