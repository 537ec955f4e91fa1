from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def money(value: Any) -> Decimal:
    """Round to 2 places, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(raw: Any, field: str) -> Decimal | None:
    """Parse form/JSON input into a Decimal. Blank -> None; garbage -> ValueError."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"{field} must be a number.") from None
    if not value.is_finite():
        raise ValueError(f"{field} must be a number.")
    return value


def parse_int(raw: Any, field: str) -> int | None:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{field} must be a whole number.") from None


def parse_date(raw: Any, field: str) -> date | None:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        raise ValueError(f"{field} must be YYYY-MM-DD.") from None


def as_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def end_of_day_exclusive(d: date) -> datetime | None:
    """Midnight after `d`, the exclusive bound for an inclusive end date. None (open) for date.max."""
    if d >= date.max:
        return None
    return datetime.combine(d + timedelta(days=1), time.min)
