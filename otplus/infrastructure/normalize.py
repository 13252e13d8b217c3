"""Map the upstream JSON shapes onto the canonical schema types."""
from __future__ import annotations

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from otplus.core.durations import (
    SECONDS_PER_HOUR,
    duration_seconds,
    normalize_timestamp,
    parse_date_key,
    seconds_to_iso,
)
from otplus.core.schema import EntryAmount, TimeEntry, User, UserProfile

logger = logging.getLogger(__name__)

AMOUNT_SHOWN = "EARNED"


def _number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def resolve_rate(value: Any) -> Decimal:
    """Accept a bare number or an ``{"amount": n}`` object; anything else is zero."""

    if isinstance(value, dict):
        value = value.get("amount")
    return _number(value) or Decimal("0")


def pick_rate(*values: Any) -> Decimal:
    for value in values:
        resolved = resolve_rate(value)
        if resolved > 0:
            return resolved
    return Decimal("0")


def _amount_item(raw: dict[str, Any]) -> EntryAmount | None:
    kind = str(raw.get("type") or raw.get("amountType") or "").upper()
    value = _number(raw.get("value", raw.get("amount")))
    if not kind or value is None:
        return None
    return EntryAmount(type=kind, value=value)


def normalize_amounts(raw: Any, fallback: Decimal | None = None) -> list[EntryAmount]:
    """Amounts arrive as a list, a single object or a ``{type: value}`` mapping."""

    items: list[EntryAmount] = []
    if isinstance(raw, list):
        items = [item for item in (_amount_item(part) for part in raw if isinstance(part, dict)) if item]
    elif isinstance(raw, dict):
        if {"type", "amountType", "value", "amount"} & raw.keys():
            item = _amount_item(raw)
            items = [item] if item else []
        else:
            for key, value in raw.items():
                number = _number(value)
                if number is not None:
                    items.append(EntryAmount(type=str(key).upper(), value=number))

    if fallback is not None and fallback != 0:
        shown = sum((item.value for item in items if item.type == AMOUNT_SHOWN), Decimal("0"))
        if shown == 0:
            items.append(EntryAmount(type=AMOUNT_SHOWN, value=fallback))
    return items


def _duration(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, str) and duration_seconds(raw) is not None:
        return raw
    return seconds_to_iso(raw)


def _tags(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    names: list[str] = []
    for tag in raw:
        if isinstance(tag, dict):
            tag = tag.get("name") or tag.get("id")
        if tag:
            names.append(str(tag))
    return names


def normalize_report_entry(raw: Any) -> TimeEntry | None:
    """Convert one detailed-report row; reports give durations in seconds."""

    if not isinstance(raw, dict):
        return None
    interval = raw.get("timeInterval")
    if not isinstance(interval, dict):
        interval = {}
    hourly_raw = raw.get("hourlyRate")
    hourly = pick_rate(raw.get("earnedRate"), raw.get("rate"), hourly_raw)
    earned = resolve_rate(raw.get("earnedRate"))
    billable = raw.get("billable") is not False
    currency = "USD"
    if isinstance(hourly_raw, dict) and hourly_raw.get("currency"):
        currency = str(hourly_raw["currency"])
    cost = resolve_rate(raw.get("costRate"))

    try:
        return TimeEntry(
            id=str(raw.get("_id") or raw.get("id") or ""),
            user_id=raw.get("userId") or None,
            user_name=raw.get("userName") or None,
            description=raw.get("description") or "",
            billable=billable,
            type=raw.get("type") or "REGULAR",
            time_interval={
                "start": normalize_timestamp(interval.get("start")) or None,
                "end": normalize_timestamp(interval.get("end")) or None,
                "duration": _duration(interval.get("duration")),
            },
            hourly_rate={"amount": hourly, "currency": currency},
            earned_rate=(earned if earned > 0 else hourly) if billable else Decimal("0"),
            cost_rate=cost or None,
            amounts=normalize_amounts(raw.get("amounts"), _number(raw.get("amount"))),
            project_id=raw.get("projectId") or None,
            project_name=raw.get("projectName") or None,
            client_id=raw.get("clientId") or None,
            client_name=raw.get("clientName") or None,
            task_id=raw.get("taskId") or None,
            task_name=raw.get("taskName") or None,
            tags=_tags(raw.get("tags")),
        )
    except (ValidationError, AttributeError, TypeError):
        logger.debug("Dropping unparseable report entry")
        return None


def normalize_time_entry(raw: Any, user: User | None = None) -> TimeEntry | None:
    """Convert one hydrated entry from the per-user time-entries endpoint."""

    if not isinstance(raw, dict):
        return None
    interval = raw.get("timeInterval")
    if not isinstance(interval, dict):
        interval = {}
    project = raw.get("project") if isinstance(raw.get("project"), dict) else {}
    task = raw.get("task") if isinstance(raw.get("task"), dict) else {}
    hourly_raw = raw.get("hourlyRate")
    currency = "USD"
    if isinstance(hourly_raw, dict) and hourly_raw.get("currency"):
        currency = str(hourly_raw["currency"])

    try:
        return TimeEntry(
            id=str(raw.get("id") or raw.get("_id") or ""),
            user_id=raw.get("userId") or (user.id if user else None),
            user_name=raw.get("userName") or (user.name if user else None),
            description=raw.get("description") or "",
            billable=raw.get("billable") is not False,
            type=raw.get("type") or "REGULAR",
            time_interval={
                "start": normalize_timestamp(interval.get("start")) or None,
                "end": normalize_timestamp(interval.get("end")) or None,
                "duration": _duration(interval.get("duration")),
            },
            hourly_rate={"amount": resolve_rate(hourly_raw), "currency": currency},
            earned_rate=resolve_rate(raw.get("earnedRate")) or None,
            cost_rate=resolve_rate(raw.get("costRate")) or None,
            amounts=normalize_amounts(raw.get("amounts")),
            project_id=raw.get("projectId") or project.get("id") or None,
            project_name=project.get("name") or raw.get("projectName") or None,
            client_id=project.get("clientId") or raw.get("clientId") or None,
            client_name=project.get("clientName") or raw.get("clientName") or None,
            task_id=raw.get("taskId") or task.get("id") or None,
            task_name=task.get("name") or raw.get("taskName") or None,
            tags=_tags(raw.get("tags")),
        )
    except (ValidationError, AttributeError, TypeError):
        logger.debug("Dropping unparseable time entry")
        return None


def normalize_user(raw: Any) -> User | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return User(
        id=str(raw["id"]),
        name=str(raw.get("name") or ""),
        email=raw.get("email") or None,
        status=raw.get("status") or None,
    )


def normalize_profile(user_id: str, raw: Any) -> UserProfile:
    if not isinstance(raw, dict):
        raise ValueError("profile payload must be an object")
    working_days = raw.get("workingDays")
    return UserProfile(
        user_id=user_id,
        work_capacity=raw.get("workCapacity") or None,
        working_days=[str(day).upper() for day in working_days] if isinstance(working_days, list) else [],
    )


def extract_date(value: Any) -> str | None:
    parsed = parse_date_key(value)
    return parsed.isoformat() if parsed else None


def half_day_hours(value: Any) -> Decimal | None:
    """Hours of a partial time-off day; ``None`` when missing, negative or not finite."""

    seconds = duration_seconds(value)
    if seconds is not None:
        return seconds / SECONDS_PER_HOUR
    number = _number(value)
    if number is None or number < 0:
        return None
    return number
