from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from otplus.core.schema import TimeEntry

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class Rates:
    """Hourly rates in cents."""

    earned: Decimal = ZERO
    cost: Decimal = ZERO
    profit: Decimal = ZERO

    def get(self, kind: str) -> Decimal:
        return getattr(self, kind)


def sum_amounts(entry: TimeEntry, kind: str) -> Decimal:
    target = kind.upper()
    return sum((item.value for item in entry.amounts if item.type.upper() == target), ZERO)


def rate_from_amounts(entry: TimeEntry, kind: str, hours: Decimal) -> Decimal:
    """Derive a cents-per-hour rate from the report amounts (given in currency units)."""

    if hours <= 0:
        return ZERO
    total = sum_amounts(entry, kind)
    if total == 0:
        return ZERO
    return (total / hours * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def extract_rates(entry: TimeEntry, hours: Decimal) -> Rates:
    billable = entry.billable is not False
    earned = ZERO
    if billable:
        earned = entry.earned_rate or (entry.hourly_rate.amount if entry.hourly_rate else ZERO)
        if not earned:
            earned = rate_from_amounts(entry, "EARNED", hours)
    cost = entry.cost_rate or rate_from_amounts(entry, "COST", hours)
    return Rates(earned=earned, cost=cost, profit=earned - cost)
