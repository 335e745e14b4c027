"""Pydantic schemas for API payloads, validation and response shaping."""
from typing import Any, Optional
import datetime as dt

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from models import (
    CURRENCIES,
    EXPENSE_CATEGORIES,
    EXPENSE_STATUSES,
    PAYMENT_METHODS,
    RECURRING_TYPES,
    ROLES,
)
from utils import normalize_iso_datetime

NAME_MIN_LEN = 2
NAME_MAX_LEN = 50
PASSWORD_MIN_LEN = 6
AVATAR_MAX_LEN = 500
TITLE_MAX_LEN = 100
DESCRIPTION_MAX_LEN = 500
LOCATION_MAX_LEN = 100
TAG_MAX_LEN = 20


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        allow_inf_nan=False,
    )

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _strip(v):
    return v.strip() if isinstance(v, str) else v


def _check_choice(value, choices, message):
    if value not in choices:
        raise ValueError(message)
    return value


# User & Auth schemas

class UserFieldsMixin:
    """Shared validators for the editable user fields."""
    @field_validator("name", mode="before", check_fields=False)
    @classmethod
    def check_name(cls, v):
        v = _strip(v)
        if not isinstance(v, str) or not NAME_MIN_LEN <= len(v) <= NAME_MAX_LEN:
            raise ValueError("Name must be between 2 and 50 characters")
        return v

    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def strip_email(cls, v):
        if v is None:
            raise ValueError("Please provide a valid email")
        return _strip(v)

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator("monthly_budget", mode="after", check_fields=False)
    @classmethod
    def check_budget(cls, v):
        if v is None or v < 0:
            raise ValueError("Monthly budget must be a positive number")
        return v

    @field_validator("currency", mode="before", check_fields=False)
    @classmethod
    def check_currency(cls, v):
        return _check_choice(v, CURRENCIES, "Invalid currency")

    @field_validator("avatar", mode="before", check_fields=False)
    @classmethod
    def check_avatar(cls, v):
        v = _strip(v)
        if v is not None and len(v) > AVATAR_MAX_LEN:
            raise ValueError("Avatar URL cannot exceed 500 characters")
        return v


class UserRegister(UserFieldsMixin, ApiModel):
    """Payload for creating an account."""
    name: str
    email: EmailStr
    password: str
    monthly_budget: float = 0
    currency: str = "USD"
    avatar: Optional[str] = None

    @field_validator("password")
    @classmethod
    def check_password(cls, v):
        if len(v) < PASSWORD_MIN_LEN:
            raise ValueError("Password must be at least 6 characters long")
        return v


class UserLogin(ApiModel):
    """Payload for logging in (normal and admin)."""
    email: EmailStr
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v):
        return _strip(v)

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator("password")
    @classmethod
    def password_required(cls, v):
        if not v:
            raise ValueError("Password is required")
        return v


class ProfileUpdate(UserFieldsMixin, ApiModel):
    """Partial self-service profile update. Unset fields are left alone."""
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    monthly_budget: Optional[float] = None
    currency: Optional[str] = None
    avatar: Optional[str] = None


class AdminUserUpdate(ProfileUpdate):
    """Admin update: profile fields plus role and activation."""
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role", mode="before")
    @classmethod
    def check_role(cls, v):
        return _check_choice(v, ROLES, "Invalid role")

    @field_validator("is_active", mode="after")
    @classmethod
    def active_not_null(cls, v):
        if v is None:
            raise ValueError("isActive must be a boolean")
        return v


class PasswordChange(ApiModel):
    """Payload to change password."""
    current_password: str
    new_password: str

    @field_validator("current_password")
    @classmethod
    def current_required(cls, v):
        if not v:
            raise ValueError("Current password is required")
        return v

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, v):
        if len(v) < PASSWORD_MIN_LEN:
            raise ValueError("New password must be at least 6 characters long")
        return v


class AccountDelete(ApiModel):
    """Password confirmation for deleting one's own account."""
    password: str

    @field_validator("password")
    @classmethod
    def password_required(cls, v):
        if not v:
            raise ValueError("Password is required to confirm account deletion")
        return v


class UserRead(ApiModel):
    """Sanitized user view. There is no password field here on purpose."""
    id: int
    name: str
    email: str
    role: str
    monthly_budget: float
    currency: str
    avatar: Optional[str] = None
    is_active: bool
    last_login: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class OwnerRead(ApiModel):
    id: int
    name: str
    email: str


class RecentUser(ApiModel):
    id: int
    name: str
    email: str
    created_at: dt.datetime
    last_login: Optional[dt.datetime] = None


# Expense schemas

class Attachment(ApiModel):
    public_id: Optional[str] = None
    url: Optional[str] = None
    filename: Optional[str] = None


class ExpenseWrite(ApiModel):
    """Full expense document, used for both create and update."""
    title: str
    amount: float
    category: str
    description: Optional[str] = None
    date: Optional[dt.datetime] = None
    payment_method: str = "Cash"
    location: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_type: str = "monthly"
    attachments: list[Attachment] = Field(default_factory=list)
    status: str = "completed"

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, v):
        v = _strip(v)
        if not isinstance(v, str) or not 1 <= len(v) <= TITLE_MAX_LEN:
            raise ValueError("Title must be between 1 and 100 characters")
        return v

    @field_validator("amount", mode="after")
    @classmethod
    def check_amount(cls, v):
        if v < 0:
            raise ValueError("Amount must be a positive number")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, v):
        return _check_choice(v, EXPENSE_CATEGORIES, "Invalid category")

    @field_validator("description", mode="before")
    @classmethod
    def check_description(cls, v):
        v = _strip(v)
        if v is not None and len(v) > DESCRIPTION_MAX_LEN:
            raise ValueError("Description cannot exceed 500 characters")
        return v

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        if v is None:
            return None
        return normalize_iso_datetime(v)

    @field_validator("payment_method", mode="before")
    @classmethod
    def check_payment_method(cls, v):
        return _check_choice(v, PAYMENT_METHODS, "Invalid payment method")

    @field_validator("location", mode="before")
    @classmethod
    def check_location(cls, v):
        v = _strip(v)
        if v is not None and len(v) > LOCATION_MAX_LEN:
            raise ValueError("Location cannot exceed 100 characters")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def check_tags(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("Tags must be an array")
        tags = [_strip(tag) for tag in v]
        for tag in tags:
            if isinstance(tag, str) and len(tag) > TAG_MAX_LEN:
                raise ValueError("Each tag cannot exceed 20 characters")
        return tags

    @field_validator("recurring_type", mode="before")
    @classmethod
    def check_recurring_type(cls, v):
        return _check_choice(v, RECURRING_TYPES, "Invalid recurring type")

    @field_validator("status", mode="before")
    @classmethod
    def check_status(cls, v):
        return _check_choice(v, EXPENSE_STATUSES, "Invalid status")

    def to_fields(self, exclude_unset: bool = False) -> dict[str, Any]:
        """Column values for the Expense table (snake_case, attachments as dicts)."""
        return self.model_dump(exclude_unset=exclude_unset)


class ExpenseRead(ApiModel):
    id: int
    user: Optional[OwnerRead] = None
    title: str
    amount: float
    category: str
    description: Optional[str] = None
    date: dt.datetime
    payment_method: str
    location: Optional[str] = None
    tags: list[str]
    is_recurring: bool
    recurring_type: str
    attachments: list[Attachment]
    status: str
    created_at: dt.datetime
    updated_at: dt.datetime


class RecentExpense(ApiModel):
    id: int
    title: str
    amount: float
    category: str
    date: dt.datetime
    user: Optional[OwnerRead] = None
