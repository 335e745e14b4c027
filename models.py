from typing import Optional, List
from datetime import datetime

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON

ROLES = ("user", "admin")
CURRENCIES = ("USD", "EUR", "GBP", "INR", "CAD", "AUD")
EXPENSE_CATEGORIES = (
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Healthcare",
    "Education",
    "Housing",
    "Utilities",
    "Insurance",
    "Travel",
    "Gifts",
    "Personal Care",
    "Subscriptions",
    "Other",
)
PAYMENT_METHODS = ("Cash", "Credit Card", "Debit Card", "Bank Transfer", "Digital Wallet", "Other")
RECURRING_TYPES = ("daily", "weekly", "monthly", "yearly")
EXPENSE_STATUSES = ("pending", "completed", "cancelled")


# These classes describe what data will be stored in the database.
# Each class = one table.
class User(SQLModel, table=True):
    """Account that owns expenses and logs in by email.

    The password hash lives here but never leaves the service: every
    response goes through ``schemas.UserRead`` which has no such field.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(index=True, unique=True)  # stored lower-cased
    hashed_password: str
    role: str = Field(default="user", index=True)
    monthly_budget: float = Field(default=0, ge=0)
    currency: str = Field(default="USD")
    avatar: Optional[str] = None
    is_active: bool = Field(default=True)
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Expense(SQLModel, table=True):
    """A single expense.

    ``user_id`` is deliberately not a foreign key: deleting a user leaves
    their expenses in place.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    title: str = Field(max_length=100)
    amount: float = Field(ge=0)
    category: str = Field(index=True)
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=datetime.utcnow, index=True)
    payment_method: str = Field(default="Cash")
    location: Optional[str] = Field(default=None, max_length=100)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_recurring: bool = Field(default=False)
    recurring_type: str = Field(default="monthly")
    attachments: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default="completed")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
