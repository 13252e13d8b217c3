from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation

from otplus.core.durations import WEEKDAY_KEYS, parse_date_key
from otplus.core.errors import ErrorType
from otplus.core.schema import DateRange, GroupBy, OverrideMode


class ValidationError(Exception):
    """Raised when local input fails validation."""

    error_type = ErrorType.VALIDATION


def validate_required_fields(payload: object, fields: Iterable[str], context: str = "Payload") -> None:
    if not isinstance(payload, Mapping):
        raise ValidationError(f"{context} is not an object")
    missing = [name for name in fields if payload.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"{context} is missing required fields: {', '.join(missing)}")


def validate_iso_date(value: object, field: str = "date") -> date:
    parsed = parse_date_key(value)
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")
    return parsed


def validate_date_range(start: object, end: object) -> DateRange:
    start_date = validate_iso_date(start, "start")
    end_date = validate_iso_date(end, "end")
    if start_date > end_date:
        raise ValidationError("start date must be on or before end date")
    return DateRange(start=start_date, end=end_date)


def parse_group_by(value: object) -> GroupBy:
    if isinstance(value, GroupBy):
        return value
    try:
        return GroupBy(str(value).lower())
    except ValueError:
        allowed = ", ".join(item.value for item in GroupBy)
        raise ValidationError(f"unknown grouping dimension {value!r}; expected one of {allowed}") from None


def parse_override_mode(value: object) -> OverrideMode:
    if isinstance(value, OverrideMode):
        return value
    try:
        return OverrideMode(value)
    except ValueError:
        raise ValidationError(f"unknown override mode {value!r}") from None


def coerce_override_number(field: str, value: object, *, minimum: Decimal = Decimal("0")) -> Decimal:
    """Convert an override value to a finite ``Decimal`` not below ``minimum``.

    Infinity is rejected along with NaN, negatives and non-numeric text.
    """

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be finite")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if not number.is_finite():
        raise ValidationError(f"{field} must be finite")
    if number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number


def coerce_working_days(value: object) -> list[str]:
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError("working_days must be a list of weekday names")
    days: list[str] = []
    for item in value:
        name = str(item).strip().upper()
        if not name:
            continue
        if name not in WEEKDAY_KEYS:
            raise ValidationError(f"unknown weekday {item!r}")
        if name not in days:
            days.append(name)
    return days
