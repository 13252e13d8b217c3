"""Per-user override records held by the override store."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from typing import Any

from otplus.core.schema import OverrideMode

NUMERIC_FIELDS = ("capacity", "multiplier", "tier2_threshold", "tier2_multiplier")


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _dump_decimal(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


@dataclass(slots=True)
class DayOverride:
    """Values that apply to a single calendar date."""

    capacity: Decimal | None = None
    is_working_day: bool | None = None
    multiplier: Decimal | None = None
    tier2_threshold: Decimal | None = None
    tier2_multiplier: Decimal | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: _dump_decimal(getattr(self, name)) for name in NUMERIC_FIELDS}
        data["is_working_day"] = self.is_working_day
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DayOverride":
        working = data.get("is_working_day")
        return cls(
            capacity=_decimal_or_none(data.get("capacity")),
            is_working_day=working if isinstance(working, bool) else None,
            multiplier=_decimal_or_none(data.get("multiplier")),
            tier2_threshold=_decimal_or_none(data.get("tier2_threshold")),
            tier2_multiplier=_decimal_or_none(data.get("tier2_multiplier")),
        )


@dataclass(slots=True)
class OverrideRecord:
    """Override state for one user.

    Global values apply every day. ``per_day_overrides`` is only populated in
    ``perDay`` mode; dates missing from it fall back to the global values.
    """

    mode: OverrideMode = OverrideMode.GLOBAL
    capacity: Decimal | None = None
    working_days: list[str] | None = None
    multiplier: Decimal | None = None
    tier2_threshold: Decimal | None = None
    tier2_multiplier: Decimal | None = None
    per_day_overrides: dict[str, DayOverride] = field(default_factory=dict)

    def day(self, date_key: str) -> DayOverride | None:
        if self.mode is not OverrideMode.PER_DAY:
            return None
        return self.per_day_overrides.get(date_key)

    def global_values(self) -> DayOverride:
        return DayOverride(
            capacity=self.capacity,
            multiplier=self.multiplier,
            tier2_threshold=self.tier2_threshold,
            tier2_multiplier=self.tier2_multiplier,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mode": self.mode.value}
        for name in NUMERIC_FIELDS:
            value = _dump_decimal(getattr(self, name))
            if value is not None:
                data[name] = value
        if self.working_days is not None:
            data["working_days"] = list(self.working_days)
        if self.per_day_overrides:
            data["per_day_overrides"] = {key: day.to_dict() for key, day in self.per_day_overrides.items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OverrideRecord":
        """Rebuild a record from persisted JSON; raises ``ValueError`` on an unusable shape."""

        if not isinstance(data, dict):
            raise ValueError("override record must be an object")
        mode = OverrideMode(data.get("mode") or OverrideMode.GLOBAL.value)
        working_days = data.get("working_days")
        per_day_raw = data.get("per_day_overrides") or {}
        per_day: dict[str, DayOverride] = {}
        if mode is OverrideMode.PER_DAY and isinstance(per_day_raw, dict):
            for key, value in per_day_raw.items():
                if isinstance(value, dict):
                    per_day[str(key)] = DayOverride.from_dict(value)
        return cls(
            mode=mode,
            capacity=_decimal_or_none(data.get("capacity")),
            working_days=[str(day) for day in working_days] if isinstance(working_days, list) else None,
            multiplier=_decimal_or_none(data.get("multiplier")),
            tier2_threshold=_decimal_or_none(data.get("tier2_threshold")),
            tier2_multiplier=_decimal_or_none(data.get("tier2_multiplier")),
            per_day_overrides=per_day,
        )
