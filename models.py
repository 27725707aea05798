from typing import Optional
from decimal import Decimal
from enum import Enum
import datetime as dt
from datetime import datetime

from sqlmodel import SQLModel, Field

# These classes describe what data will be stored in the database.
# Each class = one table, and every row except User is owned by one user_id.


class Frequency(str, Enum):
    """How often a recurring expense template comes due."""
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class User(SQLModel, table=True):
    """Login identity. Budget data hangs off the profile and user_id columns."""
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    hashed_password: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UserProfile(SQLModel, table=True):
    """One profile per user, created lazily on first sign-in.
    user_id is unique so a second concurrent insert fails instead of duplicating.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, unique=True)
    name: str = ""
    monthly_income: Decimal = Field(default=Decimal("0"), ge=0)
    savings_goal: Decimal = Field(default=Decimal("0"), ge=0)
    is_onboarded: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BudgetCategory(SQLModel, table=True):
    """A spending bucket with a monthly budget cap (e.g. 'Food', 'Housing')."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    name: str = Field(index=True, min_length=1, max_length=50)
    icon: str = "📝"
    color: str = "#4A6FFF"
    monthly_budget: Decimal = Field(default=Decimal("0"), ge=0) # never negative


class Expense(SQLModel, table=True):
    """A single spend. 'date' keeps the time of day as well."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    category_id: int = Field(foreign_key="budgetcategory.id", index=True)
    amount: Decimal = Field(gt=0) # must be a positive number
    description: str = ""
    date: datetime = Field(index=True)


class RecurringExpense(SQLModel, table=True):
    """Template for a repeating expense. It is never turned into Expense rows
    automatically; the user enters the spend when it comes due.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    category_id: int = Field(foreign_key="budgetcategory.id", index=True)
    amount: Decimal = Field(gt=0)
    description: str = ""
    frequency: Frequency = Frequency.monthly
    next_date: dt.date
