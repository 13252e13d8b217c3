from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from otplus.core.durations import duration_seconds, SECONDS_PER_HOUR


class OverrideMode(str, Enum):
    NONE = "none"
    GLOBAL = "global"
    PER_DAY = "perDay"


class OvertimeBasis(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class AmountDisplay(str, Enum):
    EARNED = "earned"
    COST = "cost"
    PROFIT = "profit"


class GroupBy(str, Enum):
    USER = "user"
    PROJECT = "project"
    CLIENT = "client"
    TASK = "task"
    DATE = "date"
    WEEK = "week"


# ----------------------------------------------------------------------
# upstream records
# ----------------------------------------------------------------------
class TimeInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str | None = None
    end: str | None = None
    duration: str | None = None


class HourlyRate(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Decimal("0")
    currency: str = "USD"


class EntryAmount(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    value: Decimal = Decimal("0")


class TimeEntry(BaseModel):
    """Canonical time entry; rates are expressed in cents per hour."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    user_id: str | None = None
    user_name: str | None = None
    description: str = ""
    billable: bool = True
    type: str = "REGULAR"
    time_interval: TimeInterval | None = None
    hourly_rate: HourlyRate | None = None
    earned_rate: Decimal | None = None
    cost_rate: Decimal | None = None
    amounts: list[EntryAmount] = Field(default_factory=list)
    project_id: str | None = None
    project_name: str | None = None
    client_id: str | None = None
    client_name: str | None = None
    task_id: str | None = None
    task_name: str | None = None
    tags: list[str] = Field(default_factory=list)


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    email: str | None = None
    status: str | None = None


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    work_capacity: str | None = None
    working_days: list[str] = Field(default_factory=list)

    @property
    def work_capacity_hours(self) -> Decimal | None:
        seconds = duration_seconds(self.work_capacity)
        if seconds is None:
            return None
        return seconds / SECONDS_PER_HOUR


class Holiday(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    date: str
    project_id: str | None = None


class TimeOffInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_full_day: bool = True
    hours: Decimal = Decimal("0")


# ----------------------------------------------------------------------
# configuration
# ----------------------------------------------------------------------
class OvertimeTier(BaseModel):
    threshold: Decimal = Field(ge=0)
    multiplier: Decimal = Field(ge=1)


class OvertimeConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    use_profile_capacity: bool = True
    use_profile_working_days: bool = True
    apply_holidays: bool = True
    apply_time_off: bool = True
    enable_tiered_ot: bool = False
    amount_display: AmountDisplay = AmountDisplay.EARNED
    overtime_basis: OvertimeBasis = OvertimeBasis.DAILY
    group_by: GroupBy = GroupBy.USER
    max_pages: int = Field(default=50, ge=0)
    timezone: str | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str | None) -> str | None:
        if not value:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}") from None
        return value


class CalcParams(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    daily_threshold: Decimal = Field(default=Decimal("8"), ge=0)
    overtime_multiplier: Decimal = Field(default=Decimal("1.5"), ge=1)
    tier2_threshold_hours: Decimal = Field(default=Decimal("0"), ge=0)
    tier2_multiplier: Decimal = Field(default=Decimal("2.0"), ge=1)
    extra_tiers: list[OvertimeTier] = Field(default_factory=list)

    @field_validator("daily_threshold", "overtime_multiplier", "tier2_threshold_hours", "tier2_multiplier")
    @classmethod
    def _finite(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("value must be finite")
        return value


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: date
    end: date


# ----------------------------------------------------------------------
# analysis output
# ----------------------------------------------------------------------
class AmountTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    earned: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    profit: Decimal = Decimal("0")


class Totals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_hours: Decimal = Decimal("0")
    regular_hours: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    tier2_hours: Decimal = Decimal("0")
    break_hours: Decimal = Decimal("0")
    pto_hours: Decimal = Decimal("0")
    billable_hours: Decimal = Decimal("0")
    non_billable_hours: Decimal = Decimal("0")
    billable_overtime_hours: Decimal = Decimal("0")
    non_billable_overtime_hours: Decimal = Decimal("0")
    amounts_base: AmountTotals = AmountTotals()
    amounts: AmountTotals = AmountTotals()
    overtime_premium: AmountTotals = AmountTotals()
    tier2_premium: AmountTotals = AmountTotals()
    amount: Decimal = Decimal("0")
    amount_base: Decimal = Decimal("0")


class UserTotals(Totals):
    expected_capacity: Decimal = Decimal("0")
    holiday_count: int = 0
    time_off_count: int = 0
    holiday_hours: Decimal = Decimal("0")
    time_off_hours: Decimal = Decimal("0")


class GroupSummary(Totals):
    key: str
    label: str
    entry_count: int = 0


class DayMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    capacity: Decimal
    is_working_day: bool = True
    is_holiday: bool = False
    holiday_name: str | None = None
    is_time_off: bool = False
    regular_hours: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    total_hours: Decimal = Decimal("0")


class EntryAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_id: str
    date: str
    kind: str
    regular_hours: Decimal
    overtime_hours: Decimal
    tier2_hours: Decimal = Decimal("0")
    multiplier: Decimal
    amounts: AmountTotals
    tags: list[str] = Field(default_factory=list)


class UserAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    user_name: str
    totals: UserTotals
    days: list[DayMeta] = Field(default_factory=list)
    entries: list[EntryAnalysis] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_by: GroupBy
    overtime_basis: OvertimeBasis
    amount_display: AmountDisplay
    start: date | None = None
    end: date | None = None
    users: list[UserAnalysis] = Field(default_factory=list)
    groups: list[GroupSummary] = Field(default_factory=list)
    rule_version: str = "otplus_v1"
