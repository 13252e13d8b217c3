"""Date, timestamp and ISO-8601 duration helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal, InvalidOperation

_DURATION_RE = re.compile(
    r"^P(?:(\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)
_SPACED_TS_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\s+(.+)$")
_COMPACT_TS_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(\d{2}:\d{2}(?::\d{2})?.*)$")
_WEEK_KEY_RE = re.compile(r"^(\d{4})-W(\d{2})$")

WEEKDAY_KEYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

SECONDS_PER_HOUR = Decimal("3600")


def duration_seconds(value: object) -> Decimal | None:
    """Return the number of seconds in an ISO-8601 duration, ``None`` when malformed."""

    if not isinstance(value, str):
        return None
    text = value.strip().upper()
    if text in {"", "P", "PT"} or text.endswith("T"):
        return None
    match = _DURATION_RE.match(text)
    if not match:
        return None
    days, hours, minutes, seconds = (Decimal(part) if part else Decimal("0") for part in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def parse_iso_duration(value: object) -> Decimal:
    """Duration in hours; malformed or missing values count as zero."""

    seconds = duration_seconds(value)
    if seconds is None:
        return Decimal("0")
    return seconds / SECONDS_PER_HOUR


def seconds_to_iso(seconds: object) -> str | None:
    """Render a second count the way the reports API duration is normalised (``PT{n}S``)."""

    if seconds is None or isinstance(seconds, bool):
        return None
    try:
        number = Decimal(str(seconds))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite() or number < 0:
        return None
    if number == number.to_integral_value():
        return f"PT{int(number)}S"
    return f"PT{number.normalize()}S"


def normalize_timestamp(value: object) -> str:
    """Turn ``YYYY-MM-DD HH:MM`` and ``YYYY-MM-DDHH:MM`` variants into ISO form."""

    if value is None:
        return ""
    text = str(value).strip()
    if not text or "T" in text:
        return text
    spaced = _SPACED_TS_RE.match(text)
    if spaced:
        return f"{spaced.group(1)}T{spaced.group(2)}"
    compact = _COMPACT_TS_RE.match(text)
    if compact:
        return f"{compact.group(1)}T{compact.group(2)}"
    return text


def parse_timestamp(value: object) -> datetime | None:
    text = normalize_timestamp(value)
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def date_key(value: object, tz: tzinfo | None = None) -> str | None:
    """Calendar date (``YYYY-MM-DD``) of a timestamp, optionally seen from ``tz``."""

    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    if tz is not None and parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date().isoformat()


def parse_date_key(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates, empty when ``start`` is after ``end``."""

    days = (end - start).days
    return [start + timedelta(days=offset) for offset in range(days + 1)]


def weekday_key(day: date) -> str:
    return WEEKDAY_KEYS[day.weekday()]


def iso_week_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def format_week_key(key: str) -> str:
    """Label for an ISO week key: ``2024-W03`` becomes ``Week 3, 2024``."""

    match = _WEEK_KEY_RE.match(key or "")
    if not match:
        return key
    return f"Week {int(match.group(2))}, {match.group(1)}"


__all__ = [
    "WEEKDAY_KEYS",
    "date_key",
    "date_range",
    "duration_seconds",
    "format_week_key",
    "iso_week_key",
    "normalize_timestamp",
    "parse_date_key",
    "parse_iso_duration",
    "parse_timestamp",
    "seconds_to_iso",
    "weekday_key",
]
