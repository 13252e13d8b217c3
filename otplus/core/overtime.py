"""Overtime analysis: turns time entries into per-user and per-group totals."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from otplus.core.capacity import (
    CapacityContext,
    effective_capacity,
    effective_multiplier,
    effective_tiers,
    holiday_for,
    is_working_day,
    time_off_for,
)
from otplus.core.durations import (
    SECONDS_PER_HOUR,
    date_key,
    date_range as expand_dates,
    iso_week_key,
    normalize_timestamp,
    parse_date_key,
    parse_iso_duration,
    parse_timestamp,
)
from otplus.core.grouping import KEY_FUNCTIONS
from otplus.core.rates import Rates, extract_rates
from otplus.core.schema import (
    AmountTotals,
    AnalysisResult,
    DateRange,
    DayMeta,
    EntryAnalysis,
    GroupBy,
    GroupSummary,
    Holiday,
    OvertimeBasis,
    TimeEntry,
    TimeOffInfo,
    User,
    UserAnalysis,
    UserProfile,
    UserTotals,
)
from otplus.core.validation import parse_group_by

if TYPE_CHECKING:
    from otplus.application.store import OverrideStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HOURS_STEP = Decimal("0.0001")
MONEY_STEP = Decimal("0.01")
AMOUNT_KINDS = ("earned", "cost", "profit")

HOLIDAY_TYPES = frozenset({"HOLIDAY", "HOLIDAY_TIME_ENTRY"})
TIME_OFF_TYPES = frozenset({"TIME_OFF", "TIME_OFF_TIME_ENTRY"})


def _hours(value: Decimal) -> Decimal:
    return value.quantize(HOURS_STEP, rounding=ROUND_HALF_UP)


def _money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_STEP, rounding=ROUND_HALF_UP)


def classify_entry(entry: TimeEntry) -> str:
    entry_type = (entry.type or "").upper()
    if entry_type == "BREAK":
        return "break"
    if entry_type in HOLIDAY_TYPES or entry_type in TIME_OFF_TYPES:
        return "pto"
    return "work"


def entry_duration_hours(entry: TimeEntry) -> Decimal:
    """Duration in hours; falls back to end minus start, never negative."""

    interval = entry.time_interval
    if interval is None:
        return ZERO
    hours = parse_iso_duration(interval.duration)
    if hours == 0:
        start = parse_timestamp(interval.start)
        end = parse_timestamp(interval.end)
        if start is not None and end is not None:
            try:
                seconds = (end - start).total_seconds()
            except TypeError:
                seconds = 0
            hours = Decimal(str(seconds)) / SECONDS_PER_HOUR
    return hours if hours > 0 else ZERO


def split_overtime(
    overtime_before: Decimal,
    hours: Decimal,
    base_multiplier: Decimal,
    tiers: list[tuple[Decimal, Decimal]],
) -> list[tuple[Decimal, Decimal]]:
    """Split ``hours`` of overtime into ``(multiplier, hours)`` segments.

    ``overtime_before`` is the user's cumulative overtime before this entry;
    each tier applies once that cumulative total passes its threshold.
    """

    if hours <= 0:
        return []
    bounds = [(ZERO, base_multiplier)] + tiers
    start = overtime_before
    end = overtime_before + hours
    segments: list[tuple[Decimal, Decimal]] = []
    for index, (threshold, multiplier) in enumerate(bounds):
        upper = bounds[index + 1][0] if index + 1 < len(bounds) else None
        low = max(start, threshold)
        high = end if upper is None else min(end, upper)
        if high > low:
            segments.append((multiplier, high - low))
    return segments


# ----------------------------------------------------------------------
# accumulation
# ----------------------------------------------------------------------
@dataclass(slots=True)
class _EntryResult:
    entry: TimeEntry
    day: date
    kind: str
    hours: Decimal
    regular: Decimal
    overtime: Decimal
    tier2: Decimal
    multiplier: Decimal
    base: dict[str, Decimal]
    premium: dict[str, Decimal]
    tier2_premium: dict[str, Decimal]
    tags: list[str]

    def total(self, kind: str) -> Decimal:
        return self.base[kind] + self.premium[kind] + self.tier2_premium[kind]


def _zero_amounts() -> dict[str, Decimal]:
    return {kind: ZERO for kind in AMOUNT_KINDS}


@dataclass(slots=True)
class _Bucket:
    total: Decimal = ZERO
    regular: Decimal = ZERO
    overtime: Decimal = ZERO
    tier2: Decimal = ZERO
    breaks: Decimal = ZERO
    pto: Decimal = ZERO
    billable: Decimal = ZERO
    non_billable: Decimal = ZERO
    billable_overtime: Decimal = ZERO
    non_billable_overtime: Decimal = ZERO
    base: dict[str, Decimal] = field(default_factory=_zero_amounts)
    premium: dict[str, Decimal] = field(default_factory=_zero_amounts)
    tier2_premium: dict[str, Decimal] = field(default_factory=_zero_amounts)
    entry_count: int = 0

    def add(self, result: _EntryResult) -> None:
        self.entry_count += 1
        self.total += result.hours
        self.regular += result.regular
        self.overtime += result.overtime
        self.tier2 += result.tier2
        if result.kind == "break":
            self.breaks += result.hours
        elif result.kind == "pto":
            self.pto += result.hours
        if result.entry.billable is not False:
            self.billable += result.hours
            self.billable_overtime += result.overtime
        else:
            self.non_billable += result.hours
            self.non_billable_overtime += result.overtime
        for kind in AMOUNT_KINDS:
            self.base[kind] += result.base[kind]
            self.premium[kind] += result.premium[kind]
            self.tier2_premium[kind] += result.tier2_premium[kind]

    def fields(self, display: str) -> dict[str, object]:
        with_ot = {kind: self.base[kind] + self.premium[kind] + self.tier2_premium[kind] for kind in AMOUNT_KINDS}
        return {
            "total_hours": _hours(self.total),
            "regular_hours": _hours(self.regular),
            "overtime_hours": _hours(self.overtime),
            "tier2_hours": _hours(self.tier2),
            "break_hours": _hours(self.breaks),
            "pto_hours": _hours(self.pto),
            "billable_hours": _hours(self.billable),
            "non_billable_hours": _hours(self.non_billable),
            "billable_overtime_hours": _hours(self.billable_overtime),
            "non_billable_overtime_hours": _hours(self.non_billable_overtime),
            "amounts_base": _amount_totals(self.base),
            "amounts": _amount_totals(with_ot),
            "overtime_premium": _amount_totals(self.premium),
            "tier2_premium": _amount_totals(self.tier2_premium),
            "amount": _money(with_ot[display]),
            "amount_base": _money(self.base[display]),
        }


def _amount_totals(values: Mapping[str, Decimal]) -> AmountTotals:
    return AmountTotals(**{kind: _money(values[kind]) for kind in AMOUNT_KINDS})


@dataclass(slots=True)
class _DayState:
    day: date
    key: str
    capacity: Decimal
    base_capacity: Decimal
    working: bool
    holiday: Holiday | None
    holiday_from_entries: bool
    time_off: TimeOffInfo | None
    time_off_from_entries: bool
    entries: list[tuple[int, TimeEntry]]

    @property
    def is_holiday(self) -> bool:
        return self.holiday is not None or self.holiday_from_entries

    @property
    def is_time_off(self) -> bool:
        return self.time_off is not None or self.time_off_from_entries


# ----------------------------------------------------------------------
# per-user processing
# ----------------------------------------------------------------------
def _day_state(
    ctx: CapacityContext,
    user_id: str,
    day: date,
    entries: list[tuple[int, TimeEntry]],
) -> _DayState:
    key = day.isoformat()
    base = effective_capacity(ctx, user_id, day)
    working = is_working_day(ctx, user_id, day)
    holiday = holiday_for(ctx, user_id, key)
    time_off = time_off_for(ctx, user_id, key)
    types = {(entry.type or "").upper() for _, entry in entries}
    holiday_from_entries = not ctx.config.apply_holidays and bool(types & HOLIDAY_TYPES)
    time_off_from_entries = not ctx.config.apply_time_off and bool(types & TIME_OFF_TYPES)

    capacity = base
    if holiday is not None or holiday_from_entries or not working:
        capacity = ZERO
    elif time_off is not None:
        capacity = ZERO if time_off.is_full_day else max(ZERO, capacity - time_off.hours)
    elif time_off_from_entries:
        logged = sum(
            (entry_duration_hours(entry) for _, entry in entries if (entry.type or "").upper() in TIME_OFF_TYPES),
            ZERO,
        )
        capacity = max(ZERO, capacity - logged)

    return _DayState(
        day=day,
        key=key,
        capacity=capacity,
        base_capacity=base,
        working=working,
        holiday=holiday,
        holiday_from_entries=holiday_from_entries,
        time_off=time_off,
        time_off_from_entries=time_off_from_entries,
        entries=entries,
    )


def _sort_key(item: tuple[int, TimeEntry]) -> str:
    interval = item[1].time_interval
    return normalize_timestamp(interval.start if interval else None)


def _analyse_user(
    ctx: CapacityContext,
    user_id: str,
    days: list[date],
    entries_by_day: dict[str, list[tuple[int, TimeEntry]]],
    results: dict[int, _EntryResult],
) -> tuple[list[DayMeta], UserTotals, list[EntryAnalysis]]:
    states = [_day_state(ctx, user_id, day, entries_by_day.get(day.isoformat(), [])) for day in days]

    weekly = ctx.config.overtime_basis is OvertimeBasis.WEEKLY
    limits: dict[str, Decimal] = {}
    for state in states:
        slot = iso_week_key(state.day) if weekly else state.key
        limits[slot] = limits.get(slot, ZERO) + state.capacity
    used: dict[str, Decimal] = {}
    overtime_so_far = ZERO

    bucket = _Bucket()
    day_meta: list[DayMeta] = []
    entry_rows: list[EntryAnalysis] = []
    for state in states:
        slot = iso_week_key(state.day) if weekly else state.key
        limit = limits[slot]
        day_regular = ZERO
        day_overtime = ZERO
        day_total = ZERO
        multiplier = effective_multiplier(ctx, user_id, state.day)
        tiers = effective_tiers(ctx, user_id, state.day)

        for index, entry in sorted(state.entries, key=_sort_key):
            hours = entry_duration_hours(entry)
            kind = classify_entry(entry)
            if kind == "work":
                consumed = used.get(slot, ZERO)
                regular = min(hours, max(ZERO, limit - consumed))
                overtime = hours - regular
                used[slot] = consumed + hours
            else:
                regular, overtime = hours, ZERO

            segments = split_overtime(overtime_so_far, overtime, multiplier, tiers)
            overtime_so_far += overtime
            tier2_hours = sum((h for m, h in segments if m != multiplier), ZERO)

            rates: Rates = extract_rates(entry, hours)
            base: dict[str, Decimal] = {}
            premium: dict[str, Decimal] = {}
            tier2_premium: dict[str, Decimal] = {}
            for amount_kind in AMOUNT_KINDS:
                rate = rates.get(amount_kind) / 100
                base[amount_kind] = hours * rate
                premium[amount_kind] = overtime * rate * (multiplier - 1)
                tier2_premium[amount_kind] = sum(
                    (h * rate * (m - multiplier) for m, h in segments if m != multiplier), ZERO
                )

            tags: list[str] = []
            if state.is_holiday:
                tags.append("HOLIDAY")
            if not state.working:
                tags.append("OFF-DAY")
            if state.is_time_off:
                tags.append("TIME-OFF")
            if kind == "break":
                tags.append("BREAK")

            result = _EntryResult(
                entry=entry,
                day=state.day,
                kind=kind,
                hours=hours,
                regular=regular,
                overtime=overtime,
                tier2=tier2_hours,
                multiplier=multiplier,
                base=base,
                premium=premium,
                tier2_premium=tier2_premium,
                tags=tags,
            )
            results[index] = result
            bucket.add(result)
            day_regular += regular
            day_overtime += overtime
            day_total += hours
            entry_rows.append(
                EntryAnalysis(
                    entry_id=entry.id,
                    date=state.key,
                    kind=kind,
                    regular_hours=_hours(regular),
                    overtime_hours=_hours(overtime),
                    tier2_hours=_hours(tier2_hours),
                    multiplier=multiplier,
                    amounts=_amount_totals({k: result.total(k) for k in AMOUNT_KINDS}),
                    tags=tags,
                )
            )

        day_meta.append(
            DayMeta(
                date=state.key,
                capacity=_hours(state.capacity),
                is_working_day=state.working,
                is_holiday=state.is_holiday,
                holiday_name=state.holiday.name if state.holiday else None,
                is_time_off=state.is_time_off,
                regular_hours=_hours(day_regular),
                overtime_hours=_hours(day_overtime),
                total_hours=_hours(day_total),
            )
        )

    holiday_days = [state for state in states if state.is_holiday]
    time_off_days = [state for state in states if state.is_time_off and not state.is_holiday]
    totals = UserTotals(
        **bucket.fields(ctx.config.amount_display.value),
        expected_capacity=_hours(sum((state.capacity for state in states), ZERO)),
        holiday_count=len(holiday_days),
        time_off_count=len(time_off_days),
        holiday_hours=_hours(sum((s.base_capacity for s in holiday_days if s.working), ZERO)),
        time_off_hours=_hours(
            sum((s.base_capacity - s.capacity for s in time_off_days if s.working), ZERO)
        ),
    )
    return day_meta, totals, entry_rows


# ----------------------------------------------------------------------
# public API
# ----------------------------------------------------------------------
def calculate_analysis(
    entries: Iterable[TimeEntry | None] | None,
    store: "OverrideStore",
    date_range: DateRange | None = None,
    *,
    users: Iterable[User] | None = None,
    profiles: Mapping[str, UserProfile] | None = None,
    holidays: Mapping[str, Mapping[str, Holiday]] | None = None,
    time_off: Mapping[str, Mapping[str, TimeOffInfo]] | None = None,
    group_by: GroupBy | str | None = None,
) -> AnalysisResult:
    """Compute the overtime analysis for ``entries``.

    The function reads the store's configuration and overrides and never
    mutates them. Malformed entries contribute zero hours instead of raising.
    Only an unknown ``group_by`` raises, as a validation error.
    """

    config = store.config
    resolved_group = parse_group_by(group_by if group_by is not None else config.group_by)
    grouping = KEY_FUNCTIONS[resolved_group]
    tz = ZoneInfo(config.timezone) if config.timezone else None

    ctx = CapacityContext(
        config=config,
        params=store.calc_params,
        overrides=store.overrides,
        profiles=profiles or {},
        holidays=holidays or {},
        time_off=time_off or {},
    )

    by_user: dict[str, dict[str, list[tuple[int, TimeEntry]]]] = {}
    names: dict[str, str] = {}
    first_seen: list[str] = []
    min_day: date | None = None
    max_day: date | None = None
    skipped = 0
    for index, entry in enumerate(entries or []):
        if entry is None:
            skipped += 1
            continue
        user_id = entry.user_id or "unknown"
        if user_id not in by_user:
            by_user[user_id] = {}
            first_seen.append(user_id)
        if entry.user_name and user_id not in names:
            names[user_id] = entry.user_name
        key = date_key(entry.time_interval.start if entry.time_interval else None, tz)
        day = parse_date_key(key)
        if day is None:
            skipped += 1
            continue
        by_user[user_id].setdefault(key, []).append((index, entry))
        min_day = day if min_day is None or day < min_day else min_day
        max_day = day if max_day is None or day > max_day else max_day
    if skipped:
        logger.debug("Skipped %d entries without a usable start date", skipped)

    start = date_range.start if date_range else min_day
    end = date_range.end if date_range else max_day
    result_fields = {
        "group_by": resolved_group,
        "overtime_basis": config.overtime_basis,
        "amount_display": config.amount_display,
    }
    if start is None or end is None:
        return AnalysisResult(**result_fields)

    order: list[str] = []
    for user in users or []:
        if user is not None and user.id not in order:
            order.append(user.id)
            if user.name:
                names[user.id] = user.name
    order.extend(user_id for user_id in first_seen if user_id not in order)

    days = expand_dates(start, end)
    results: dict[int, _EntryResult] = {}
    user_rows: list[UserAnalysis] = []
    for user_id in order:
        day_meta, totals, entry_rows = _analyse_user(ctx, user_id, days, by_user.get(user_id, {}), results)
        user_rows.append(
            UserAnalysis(
                user_id=user_id,
                user_name=names.get(user_id, "Unknown"),
                totals=totals,
                days=day_meta,
                entries=entry_rows,
            )
        )

    buckets: dict[str, _Bucket] = {}
    labels: dict[str, str] = {}
    for index in sorted(results):
        result = results[index]
        key, label = grouping(result.entry, result.day)
        if key not in buckets:
            buckets[key] = _Bucket()
            labels[key] = label
        buckets[key].add(result)

    display = config.amount_display.value
    groups = [
        GroupSummary(key=key, label=labels[key], entry_count=bucket.entry_count, **bucket.fields(display))
        for key, bucket in buckets.items()
    ]
    return AnalysisResult(**result_fields, start=start, end=end, users=user_rows, groups=groups)


__all__ = ["calculate_analysis", "classify_entry", "entry_duration_hours", "split_overtime"]
