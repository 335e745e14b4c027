"""Expense aggregation queries used by the stats and admin dashboard endpoints.

Every function takes a list of SQLAlchemy conditions that scope the
expenses considered (owner, date range); an empty list means all
expenses. All of them are read-only.
"""
import datetime as dt
from typing import Any, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, col, select

from models import Expense, User
from schemas import OwnerRead, RecentExpense, RecentUser
from utils import round_money, year_window

RECENT_LIMIT = 5


def date_conditions(start: Optional[dt.datetime], end: Optional[dt.datetime]) -> list:
    """``date >= start`` and ``date <= end``, each only when given."""
    conditions = []
    if start is not None:
        conditions.append(col(Expense.date) >= start)
    if end is not None:
        conditions.append(col(Expense.date) <= end)
    return conditions


def total_expenses(session: Session, conditions: Sequence = ()) -> dict[str, Any]:
    """Grand total amount and number of expenses."""
    stmt = select(func.sum(Expense.amount), func.count(Expense.id)).where(*conditions)
    total, count = session.exec(stmt).one()
    return {"total": round_money(total), "count": count or 0}


def totals_by_category(session: Session, conditions: Sequence = ()) -> list[dict[str, Any]]:
    """Per-category subtotal and count, biggest subtotal first."""
    total = func.sum(Expense.amount).label("total")
    stmt = (
        select(Expense.category, total, func.count(Expense.id))
        .where(*conditions)
        .group_by(Expense.category)
        .order_by(total.desc(), Expense.category)
    )
    return [
        {"category": category, "total": round_money(subtotal), "count": count}
        for category, subtotal, count in session.exec(stmt).all()
    ]


def monthly_totals(session: Session, year: int, conditions: Sequence = ()) -> list[dict[str, Any]]:
    """Per-calendar-month subtotal and count within ``year``.

    Months without expenses are absent rather than zero-filled.
    """
    start, end = year_window(year)
    month = func.extract("month", Expense.date).label("month")
    stmt = (
        select(month, func.sum(Expense.amount), func.count(Expense.id))
        .where(col(Expense.date) >= start, col(Expense.date) < end, *conditions)
        .group_by(month)
        .order_by(month)
    )
    return [
        {"month": int(month_number), "total": round_money(subtotal), "count": count}
        for month_number, subtotal, count in session.exec(stmt).all()
    ]


def owners_by_id(session: Session, user_ids) -> dict[int, User]:
    """Load the owners of a batch of expenses in one query."""
    ids = set(user_ids)
    if not ids:
        return {}
    users = session.exec(select(User).where(col(User.id).in_(ids))).all()
    return {user.id: user for user in users}


def recent_expenses(
    session: Session,
    conditions: Sequence = (),
    with_owner: bool = False,
    limit: int = RECENT_LIMIT,
) -> list[dict[str, Any]]:
    """The most recent expenses by date, trimmed to title/amount/category/date."""
    stmt = (
        select(Expense)
        .where(*conditions)
        .order_by(col(Expense.date).desc(), col(Expense.id).desc())
        .limit(limit)
    )
    expenses = session.exec(stmt).all()
    owners = owners_by_id(session, (e.user_id for e in expenses)) if with_owner else {}

    rows = []
    for expense in expenses:
        row = RecentExpense.model_validate(expense).dump()
        if with_owner:
            owner = owners.get(expense.user_id)
            row["user"] = OwnerRead.model_validate(owner).dump() if owner else None
        else:
            row.pop("user")
        rows.append(row)
    return rows


def user_stats(
    session: Session,
    user_id: int,
    start: Optional[dt.datetime] = None,
    end: Optional[dt.datetime] = None,
    year: Optional[int] = None,
) -> dict[str, Any]:
    """Statistics for one user's expenses, optionally limited to a date range.

    The monthly breakdown always covers the current year and ignores the
    date range.
    """
    owned = [col(Expense.user_id) == user_id]
    scoped = owned + date_conditions(start, end)
    if year is None:
        year = dt.datetime.utcnow().year

    return {
        "totalExpenses": total_expenses(session, scoped),
        "expensesByCategory": totals_by_category(session, scoped),
        "monthlyExpenses": monthly_totals(session, year, owned),
        "recentExpenses": recent_expenses(session, scoped),
    }


def dashboard_stats(session: Session, year: Optional[int] = None) -> dict[str, Any]:
    """Global figures for the admin dashboard."""
    if year is None:
        year = dt.datetime.utcnow().year

    total_users = session.exec(
        select(func.count(User.id)).where(User.role == "user")
    ).one()
    active_users = session.exec(
        select(func.count(User.id)).where(User.role == "user", col(User.is_active).is_(True))
    ).one()
    recent_users = session.exec(
        select(User)
        .where(User.role == "user")
        .order_by(col(User.created_at).desc(), col(User.id).desc())
        .limit(RECENT_LIMIT)
    ).all()

    return {
        "totalUsers": total_users,
        "activeUsers": active_users,
        "totalExpenses": total_expenses(session),
        "expensesByCategory": totals_by_category(session),
        "recentUsers": [RecentUser.model_validate(u).dump() for u in recent_users],
        "recentExpenses": recent_expenses(session, with_owner=True),
        "monthlyExpenses": monthly_totals(session, year),
    }
