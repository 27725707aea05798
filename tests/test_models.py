import datetime as dt
from decimal import Decimal

from sqlmodel import select

from models import BudgetCategory, Expense, User


def test_naive_datetimes_round_trip(db_session):
    user = User(email="clock@example.com", hashed_password="x")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    assert user.created_at.tzinfo is None

    category = BudgetCategory(user_id=user.id, name="Food", monthly_budget=Decimal("100"))
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)

    when = dt.datetime(2024, 6, 13, 15, 30)
    db_session.add(
        Expense(user_id=user.id, category_id=category.id, amount=Decimal("12.50"), date=when)
    )
    db_session.commit()

    stored = db_session.exec(select(Expense)).one()
    assert stored.date == when
    assert stored.date.tzinfo is None
