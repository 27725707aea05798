"""User-scoped data services.

Each service wraps one database session and one owning user id; every
query it issues carries a ``user_id ==`` filter. Reads feed the pure
aggregation functions in ``analytics``. Any store failure is raised as
StoreError and nothing partial is returned.
"""
import datetime as dt
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

import analytics
from config import RECENT_EXPENSES_LIMIT
from errors import InvalidInputError, NotFoundError, StoreError
from models import BudgetCategory, Expense, RecurringExpense, UserProfile
from schemas import (
    BudgetSummary,
    CategoryCreate,
    CategoryProgress,
    CategorySlice,
    CategoryUpdate,
    ExpenseCreate,
    ExpenseRead,
    ExpenseUpdate,
    OnboardingPayload,
    RecurringExpenseCreate,
    RecurringExpenseRead,
    RecurringExpenseUpdate,
    SpendingSummary,
    TrendSeries,
)
from timeframes import month_window, resolve_window, trend_window
from utils import filter_expenses

logger = logging.getLogger("budget-tracker.services")

# Cycled in order so new categories get distinct, readable colors.
CATEGORY_PALETTE = [
    "#4A6FFF",
    "#FF9500",
    "#34C759",
    "#AF52DE",
    "#FF2D55",
    "#5AC8FA",
    "#FF3B30",
    "#FFCC00",
]

DEFAULT_CATEGORIES = [
    {"name": "Housing", "icon": "🏠", "color": "#4A6FFF"},
    {"name": "Food", "icon": "🍔", "color": "#FF9500"},
    {"name": "Transportation", "icon": "🚗", "color": "#34C759"},
    {"name": "Entertainment", "icon": "🎬", "color": "#AF52DE"},
    {"name": "Shopping", "icon": "🛍️", "color": "#FF2D55"},
    {"name": "Utilities", "icon": "💡", "color": "#5AC8FA"},
    {"name": "Health", "icon": "⚕️", "color": "#FF3B30"},
    {"name": "Personal", "icon": "👤", "color": "#FFCC00"},
]


def palette_color(index: int) -> str:
    return CATEGORY_PALETTE[index % len(CATEGORY_PALETTE)]


class UserScopedService:
    """Shared plumbing: the owning user, the session, and scoped lookups."""

    def __init__(self, db: Session, user_id: int):
        self.db = db
        self.user_id = user_id

    @contextmanager
    def store_errors(self, action: str) -> Iterator[None]:
        """Turn any SQLAlchemy failure inside the block into StoreError."""
        try:
            yield
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Store failure for user %s while trying to %s", self.user_id, action)
            raise StoreError(action)

    def save_and_refresh(self, instance, action: str):
        """Persist and refresh an instance in the current session."""
        with self.store_errors(action):
            self.db.add(instance)
            self.db.commit()
            self.db.refresh(instance)
        return instance

    def list_categories(self) -> list[BudgetCategory]:
        with self.store_errors("load categories"):
            stmt = (
                select(BudgetCategory)
                .where(BudgetCategory.user_id == self.user_id)
                .order_by(BudgetCategory.name)
            )
            return list(self.db.exec(stmt).all())

    def expenses_between(self, start: dt.datetime, end: dt.datetime) -> list[Expense]:
        """Expenses with start <= date <= end, newest first."""
        with self.store_errors("load expenses"):
            stmt = (
                select(Expense)
                .where(
                    Expense.user_id == self.user_id,
                    Expense.date >= start,
                    Expense.date <= end,
                )
                .order_by(Expense.date.desc())
            )
            return list(self.db.exec(stmt).all())

    def get_owned(self, model, row_id: int, label: str):
        """Fetch one of this user's rows or raise NotFoundError."""
        with self.store_errors(f"load {label.lower()}"):
            row = self.db.get(model, row_id)
        if row is None or row.user_id != self.user_id:
            raise NotFoundError(f"{label} not found")
        return row

    def category_for_write(self, category_id: int) -> BudgetCategory:
        """Category referenced by a payload; a foreign or missing one is bad input."""
        try:
            return self.get_owned(BudgetCategory, category_id, "Category")
        except NotFoundError:
            raise InvalidInputError("Category not found")


class UserService(UserScopedService):

    def get_profile(self) -> UserProfile:
        with self.store_errors("load profile"):
            stmt = select(UserProfile).where(UserProfile.user_id == self.user_id)
            profile = self.db.exec(stmt).first()
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    def ensure_profile(self, name: str = "", is_onboarded: bool = False) -> UserProfile:
        """Return the user's profile, creating it if it does not exist yet.

        Safe to call concurrently: if another caller inserts the row first,
        the unique user_id makes our insert fail and the existing row is
        read back and returned instead.
        """
        try:
            return self.get_profile()
        except NotFoundError:
            pass

        profile = UserProfile(user_id=self.user_id, name=name, is_onboarded=is_onboarded)
        try:
            self.db.add(profile)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Profile for user %s was created concurrently, re-reading", self.user_id)
            return self.get_profile()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not create profile for user %s", self.user_id)
            raise StoreError("create profile")

        self.db.refresh(profile)
        logger.info("Created profile for user %s", self.user_id)
        return profile

    def update_profile(self, data: dict) -> UserProfile:
        """Apply changes to the profile, creating it first if it is missing."""
        try:
            profile = self.get_profile()
        except NotFoundError:
            profile = UserProfile(user_id=self.user_id)

        for field, value in data.items():
            if value is not None:
                setattr(profile, field, value)
        return self.save_and_refresh(profile, "save profile")

    def complete_onboarding(self, payload: OnboardingPayload) -> UserProfile:
        """Store income and savings goal, create the chosen categories, and
        mark the user as onboarded."""
        budgets = BudgetService(self.db, self.user_id)
        for category in payload.categories:
            budgets.add_category(category)

        return self.update_profile(
            {
                "monthly_income": payload.monthly_income,
                "savings_goal": payload.savings_goal,
                "is_onboarded": True,
            }
        )


class BudgetService(UserScopedService):

    def get_categories(self) -> list[BudgetCategory]:
        return self.list_categories()

    def add_category(self, data: CategoryCreate) -> BudgetCategory:
        color = data.color
        if color is None:
            color = palette_color(len(self.list_categories()))

        row = BudgetCategory(
            user_id=self.user_id,
            name=data.name,
            icon=data.icon,
            color=color,
            monthly_budget=data.monthly_budget,
        )
        return self.save_and_refresh(row, "save category")

    def update_category(self, category_id: int, data: CategoryUpdate) -> BudgetCategory:
        category = self.get_owned(BudgetCategory, category_id, "Category")
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(category, field, value)
        return self.save_and_refresh(category, "save category")

    def delete_category(self, category_id: int) -> None:
        """Delete a category together with its expenses and recurring templates.

        Children are deleted before the parent, all in one commit.
        """
        category = self.get_owned(BudgetCategory, category_id, "Category")

        with self.store_errors("delete category"):
            expenses = self.db.exec(
                select(Expense).where(
                    Expense.category_id == category_id,
                    Expense.user_id == self.user_id,
                )
            ).all()
            for expense in expenses:
                self.db.delete(expense)

            templates = self.db.exec(
                select(RecurringExpense).where(
                    RecurringExpense.category_id == category_id,
                    RecurringExpense.user_id == self.user_id,
                )
            ).all()
            for template in templates:
                self.db.delete(template)

            # flush children first so the parent delete never sees dangling references
            self.db.flush()
            self.db.delete(category)
            self.db.commit()

        logger.info(
            "Deleted category %s for user %s (%d expenses, %d recurring)",
            category_id,
            self.user_id,
            len(expenses),
            len(templates),
        )

    def get_budget_summary(self, now: Optional[dt.datetime] = None) -> BudgetSummary:
        now = now or dt.datetime.now()
        window = month_window(now)
        categories = self.list_categories()
        expenses = self.expenses_between(window.start, window.end)
        return analytics.budget_summary(categories, expenses)

    def get_categories_with_progress(self, now: Optional[dt.datetime] = None) -> list[CategoryProgress]:
        now = now or dt.datetime.now()
        window = month_window(now)
        categories = self.list_categories()
        expenses = self.expenses_between(window.start, window.end)
        return analytics.categories_with_progress(categories, expenses)


class ExpenseService(UserScopedService):

    def _flatten(self, expense: Expense, lookup: dict[int, BudgetCategory]) -> ExpenseRead:
        category = lookup[expense.category_id]
        return ExpenseRead(
            id=expense.id,
            amount=expense.amount,
            description=expense.description,
            date=expense.date,
            category_id=expense.category_id,
            category_name=category.name,
            category_icon=category.icon,
            category_color=category.color,
        )

    def _flatten_all(self, expenses: list[Expense]) -> list[ExpenseRead]:
        lookup = {c.id: c for c in self.list_categories()}
        return [self._flatten(e, lookup) for e in expenses]

    def get_expenses(
        self,
        query: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> list[ExpenseRead]:
        """All expenses, newest first, optionally narrowed by text and category."""
        with self.store_errors("load expenses"):
            stmt = (
                select(Expense)
                .where(Expense.user_id == self.user_id)
                .order_by(Expense.date.desc())
            )
            expenses = list(self.db.exec(stmt).all())
        return self._flatten_all(filter_expenses(expenses, query=query, category_id=category_id))

    def get_recent_expenses(self, limit: int = RECENT_EXPENSES_LIMIT) -> list[ExpenseRead]:
        with self.store_errors("load expenses"):
            stmt = (
                select(Expense)
                .where(Expense.user_id == self.user_id)
                .order_by(Expense.date.desc())
                .limit(limit)
            )
            expenses = list(self.db.exec(stmt).all())
        return self._flatten_all(expenses)

    def get_expenses_by_timeframe(self, timeframe, now: Optional[dt.datetime] = None) -> list[ExpenseRead]:
        window = resolve_window(timeframe, now or dt.datetime.now())
        return self._flatten_all(self.expenses_between(window.start, window.end))

    def add_expense(self, data: ExpenseCreate, now: Optional[dt.datetime] = None) -> ExpenseRead:
        category = self.category_for_write(data.category_id)
        row = Expense(
            user_id=self.user_id,
            category_id=category.id,
            amount=data.amount,
            description=data.description,
            date=data.date or now or dt.datetime.now(),
        )
        self.save_and_refresh(row, "save expense")
        return self._flatten(row, {category.id: category})

    def update_expense(self, expense_id: int, data: ExpenseUpdate) -> ExpenseRead:
        expense = self.get_owned(Expense, expense_id, "Expense")
        changes = data.model_dump(exclude_unset=True)

        if changes.get("category_id") is not None:
            self.category_for_write(changes["category_id"])

        for field, value in changes.items():
            if value is not None:
                setattr(expense, field, value)
        self.save_and_refresh(expense, "save expense")
        return self._flatten_all([expense])[0]

    def delete_expense(self, expense_id: int) -> None:
        expense = self.get_owned(Expense, expense_id, "Expense")
        with self.store_errors("delete expense"):
            self.db.delete(expense)
            self.db.commit()

    # Recurring templates

    def _flatten_recurring(self, template: RecurringExpense, category: BudgetCategory) -> RecurringExpenseRead:
        return RecurringExpenseRead(
            id=template.id,
            amount=template.amount,
            description=template.description,
            frequency=template.frequency,
            next_date=template.next_date,
            category_id=template.category_id,
            category_name=category.name,
            category_icon=category.icon,
            category_color=category.color,
        )

    def get_recurring_expenses(self) -> list[RecurringExpenseRead]:
        """Templates ordered by the date they next come due."""
        with self.store_errors("load recurring expenses"):
            stmt = (
                select(RecurringExpense)
                .where(RecurringExpense.user_id == self.user_id)
                .order_by(RecurringExpense.next_date)
            )
            templates = list(self.db.exec(stmt).all())
        lookup = {c.id: c for c in self.list_categories()}
        return [self._flatten_recurring(t, lookup[t.category_id]) for t in templates]

    def add_recurring_expense(self, data: RecurringExpenseCreate) -> RecurringExpenseRead:
        category = self.category_for_write(data.category_id)
        row = RecurringExpense(
            user_id=self.user_id,
            category_id=category.id,
            amount=data.amount,
            description=data.description,
            frequency=data.frequency,
            next_date=data.next_date,
        )
        self.save_and_refresh(row, "save recurring expense")
        return self._flatten_recurring(row, category)

    def update_recurring_expense(self, template_id: int, data: RecurringExpenseUpdate) -> RecurringExpenseRead:
        template = self.get_owned(RecurringExpense, template_id, "Recurring expense")
        changes = data.model_dump(exclude_unset=True)

        if changes.get("category_id") is not None:
            self.category_for_write(changes["category_id"])

        for field, value in changes.items():
            if value is not None:
                setattr(template, field, value)
        self.save_and_refresh(template, "save recurring expense")
        category = self.get_owned(BudgetCategory, template.category_id, "Category")
        return self._flatten_recurring(template, category)

    def delete_recurring_expense(self, template_id: int) -> None:
        template = self.get_owned(RecurringExpense, template_id, "Recurring expense")
        with self.store_errors("delete recurring expense"):
            self.db.delete(template)
            self.db.commit()


class AnalyticsService(UserScopedService):

    def get_spending_by_category(self, timeframe, now: Optional[dt.datetime] = None) -> list[CategorySlice]:
        window = resolve_window(timeframe, now or dt.datetime.now())
        expenses = self.expenses_between(window.start, window.end)
        return analytics.spending_by_category(expenses, self.list_categories())

    def get_spending_trends(self, timeframe, now: Optional[dt.datetime] = None) -> TrendSeries:
        now = now or dt.datetime.now()
        window = trend_window(timeframe, now)
        expenses = self.expenses_between(window.start, window.end)
        return analytics.spending_trends(expenses, timeframe, now)

    def get_spending_summary(self, timeframe, now: Optional[dt.datetime] = None) -> SpendingSummary:
        now = now or dt.datetime.now()
        window = resolve_window(timeframe, now)
        expenses = self.expenses_between(window.start, window.end)
        return analytics.spending_summary(expenses, self.list_categories(), timeframe, now)
