"""Utility helpers for money rounding, dates, pagination and response envelopes."""
import datetime as dt
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional


def round_money(value: Any) -> float:
    """Round to 2 decimal places with HALF_UP (normal money rounding)."""
    if value is None:
        return 0.0
    dec = Decimal(str(value))
    return float(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_naive_utc(value: dt.datetime) -> dt.datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


def normalize_iso_datetime(value: Any) -> dt.datetime:
    """Normalize an ISO 8601 date or datetime to a naive UTC datetime or raise a ValueError."""
    if isinstance(value, dt.datetime):
        return to_naive_utc(value)

    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(dt.datetime.fromisoformat(text))
        except ValueError:
            raise ValueError("Invalid date format")

    raise ValueError("Invalid date format")


def year_window(year: int) -> tuple[dt.datetime, dt.datetime]:
    """Half-open window ``[Jan 1 of year, Jan 1 of year + 1)``."""
    return dt.datetime(year, 1, 1), dt.datetime(year + 1, 1, 1)


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def build_pagination(page: int, limit: int, total: int) -> dict[str, int]:
    """Pagination block shared by every list endpoint."""
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
    }


def success(data: Optional[Any] = None, message: Optional[str] = None) -> dict[str, Any]:
    """Wrap a payload in the ``{status, message?, data?}`` envelope."""
    body: dict[str, Any] = {"status": "success"}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
