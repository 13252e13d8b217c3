"""Resolution of per-user, per-date capacity, working days and overtime tiers.

Each value resolves in the same order: a per-day override (``perDay`` mode
only), then the user's global override, then the member profile where the
configuration allows it, then the workspace calculation defaults.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from otplus.core.durations import weekday_key
from otplus.core.schema import CalcParams, Holiday, OvertimeConfig, TimeOffInfo, UserProfile
from otplus.domain import OverrideRecord


@dataclass(slots=True)
class CapacityContext:
    config: OvertimeConfig
    params: CalcParams
    overrides: Mapping[str, OverrideRecord] = field(default_factory=dict)
    profiles: Mapping[str, UserProfile] = field(default_factory=dict)
    holidays: Mapping[str, Mapping[str, Holiday]] = field(default_factory=dict)
    time_off: Mapping[str, Mapping[str, TimeOffInfo]] = field(default_factory=dict)


def _override_value(ctx: CapacityContext, user_id: str, day: date, name: str) -> Any:
    record = ctx.overrides.get(user_id)
    if record is None:
        return None
    day_override = record.day(day.isoformat())
    if day_override is not None and getattr(day_override, name) is not None:
        return getattr(day_override, name)
    return getattr(record, name)


def effective_capacity(ctx: CapacityContext, user_id: str, day: date) -> Decimal:
    """Base capacity in hours before holiday, time-off and working-day adjustment."""

    value = _override_value(ctx, user_id, day, "capacity")
    if value is not None:
        return value
    if ctx.config.use_profile_capacity:
        profile = ctx.profiles.get(user_id)
        if profile is not None and profile.work_capacity_hours is not None:
            return profile.work_capacity_hours
    return ctx.params.daily_threshold


def is_working_day(ctx: CapacityContext, user_id: str, day: date) -> bool:
    record = ctx.overrides.get(user_id)
    if record is not None:
        day_override = record.day(day.isoformat())
        if day_override is not None and day_override.is_working_day is not None:
            return day_override.is_working_day
        if record.working_days is not None:
            return weekday_key(day) in record.working_days
    if ctx.config.use_profile_working_days:
        profile = ctx.profiles.get(user_id)
        if profile is not None and profile.working_days:
            return weekday_key(day) in {item.upper() for item in profile.working_days}
    return True


def effective_multiplier(ctx: CapacityContext, user_id: str, day: date) -> Decimal:
    value = _override_value(ctx, user_id, day, "multiplier")
    return value if value is not None else ctx.params.overtime_multiplier


def effective_tiers(ctx: CapacityContext, user_id: str, day: date) -> list[tuple[Decimal, Decimal]]:
    """Overtime tiers above the base multiplier as ``(threshold, multiplier)`` pairs.

    Thresholds count cumulative overtime hours per user. Tiers whose multiplier
    does not exceed the base multiplier are dropped; the rest are sorted by
    threshold.
    """

    if not ctx.config.enable_tiered_ot:
        return []
    base = effective_multiplier(ctx, user_id, day)
    threshold = _override_value(ctx, user_id, day, "tier2_threshold")
    multiplier = _override_value(ctx, user_id, day, "tier2_multiplier")
    tiers = [
        (
            threshold if threshold is not None else ctx.params.tier2_threshold_hours,
            multiplier if multiplier is not None else ctx.params.tier2_multiplier,
        )
    ]
    tiers.extend((tier.threshold, tier.multiplier) for tier in ctx.params.extra_tiers)
    return sorted((tier for tier in tiers if tier[1] > base), key=lambda tier: tier[0])


def holiday_for(ctx: CapacityContext, user_id: str, day_key: str) -> Holiday | None:
    if not ctx.config.apply_holidays:
        return None
    return (ctx.holidays.get(user_id) or {}).get(day_key)


def time_off_for(ctx: CapacityContext, user_id: str, day_key: str) -> TimeOffInfo | None:
    if not ctx.config.apply_time_off:
        return None
    return (ctx.time_off.get(user_id) or {}).get(day_key)
