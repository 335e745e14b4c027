import datetime as dt
import pytest
from pydantic import ValidationError

from schemas import AdminUserUpdate, ExpenseWrite, ProfileUpdate, UserRead, UserRegister


def test_register_trims_name_and_lowercases_email():
    payload = UserRegister(name="  Ada Lovelace  ", email="  Ada@Example.COM ", password="secret1")
    assert payload.name == "Ada Lovelace"
    assert payload.email == "ada@example.com"
    assert payload.monthly_budget == 0
    assert payload.currency == "USD"


def test_register_accepts_camel_case_fields():
    payload = UserRegister.model_validate(
        {"name": "Ada", "email": "ada@example.com", "password": "secret1", "monthlyBudget": 250, "currency": "EUR"}
    )
    assert payload.monthly_budget == 250
    assert payload.currency == "EUR"


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "A"},
        {"name": "x" * 51},
        {"email": "not-an-email"},
        {"password": "12345"},
        {"monthlyBudget": -1},
        {"currency": "JPY"},
    ],
)
def test_register_rejects_invalid_fields(overrides):
    body = {"name": "Ada", "email": "ada@example.com", "password": "secret1", **overrides}
    with pytest.raises(ValidationError):
        UserRegister.model_validate(body)


def test_profile_update_tracks_only_sent_fields():
    payload = ProfileUpdate.model_validate({"monthlyBudget": 300})
    assert payload.model_dump(exclude_unset=True) == {"monthly_budget": 300}


def test_profile_update_rejects_explicit_null_name():
    with pytest.raises(ValidationError):
        ProfileUpdate.model_validate({"name": None})


def test_admin_update_checks_role():
    assert AdminUserUpdate.model_validate({"role": "admin"}).role == "admin"
    with pytest.raises(ValidationError) as exc_info:
        AdminUserUpdate.model_validate({"role": "owner"})
    assert "Invalid role" in str(exc_info.value)


def test_expense_defaults_and_trimming():
    payload = ExpenseWrite(title="  Taxi ride  ", amount=12.5, category="Transportation", tags=[" cab "])
    assert payload.title == "Taxi ride"
    assert payload.tags == ["cab"]
    assert payload.payment_method == "Cash"
    assert payload.recurring_type == "monthly"
    assert payload.status == "completed"
    assert payload.is_recurring is False
    assert payload.date is None


def test_expense_date_parsed_from_iso_string():
    payload = ExpenseWrite.model_validate(
        {"title": "Rent", "amount": 900, "category": "Housing", "date": "2025-02-01"}
    )
    assert payload.date == dt.datetime(2025, 2, 1)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"amount": -1}, "Amount must be a positive number"),
        ({"category": "Pets"}, "Invalid category"),
        ({"title": ""}, "Title must be between 1 and 100 characters"),
        ({"title": "x" * 101}, "Title must be between 1 and 100 characters"),
        ({"description": "d" * 501}, "Description cannot exceed 500 characters"),
        ({"location": "l" * 101}, "Location cannot exceed 100 characters"),
        ({"tags": ["t" * 21]}, "Each tag cannot exceed 20 characters"),
        ({"tags": "food"}, "Tags must be an array"),
        ({"paymentMethod": "Cheque"}, "Invalid payment method"),
        ({"recurringType": "hourly"}, "Invalid recurring type"),
        ({"status": "lost"}, "Invalid status"),
        ({"date": "03/02/2025"}, "Invalid date format"),
    ],
)
def test_expense_rejects_invalid_fields(overrides, message):
    body = {"title": "Coffee", "amount": 4.5, "category": "Food & Dining", **overrides}
    with pytest.raises(ValidationError) as exc_info:
        ExpenseWrite.model_validate(body)
    assert message in str(exc_info.value)


def test_user_read_has_no_password_field():
    assert "hashed_password" not in UserRead.model_fields
    assert "password" not in UserRead.model_fields


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan"), "Infinity", "NaN"])
def test_non_finite_numbers_rejected(value):
    with pytest.raises(ValidationError):
        ExpenseWrite.model_validate({"title": "Coffee", "amount": value, "category": "Other"})
    with pytest.raises(ValidationError):
        ProfileUpdate.model_validate({"monthlyBudget": value})
