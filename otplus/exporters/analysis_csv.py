from __future__ import annotations

from pathlib import Path

import pandas as pd

from otplus.core.schema import AnalysisResult, Totals

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def sanitize_cell(value: str | None) -> str:
    """Neutralise spreadsheet formula injection in free-text cells."""

    text = value or ""
    if text.startswith(FORMULA_PREFIXES):
        return f"'{text}"
    return text


def _totals_columns(totals: Totals) -> dict[str, object]:
    return {
        "total_hours": totals.total_hours,
        "regular_hours": totals.regular_hours,
        "overtime_hours": totals.overtime_hours,
        "tier2_hours": totals.tier2_hours,
        "break_hours": totals.break_hours,
        "pto_hours": totals.pto_hours,
        "billable_hours": totals.billable_hours,
        "non_billable_hours": totals.non_billable_hours,
        "earned": totals.amounts.earned,
        "cost": totals.amounts.cost,
        "profit": totals.amounts.profit,
        "earned_base": totals.amounts_base.earned,
        "cost_base": totals.amounts_base.cost,
        "profit_base": totals.amounts_base.profit,
        "amount": totals.amount,
    }


def group_summary_frame(result: AnalysisResult) -> pd.DataFrame:
    records = [
        {"group": sanitize_cell(group.label), "key": sanitize_cell(group.key), "entries": group.entry_count}
        | _totals_columns(group)
        for group in result.groups
    ]
    return pd.DataFrame(records, columns=["group", "key", "entries", *_totals_columns(Totals()).keys()])


def daily_frame(result: AnalysisResult) -> pd.DataFrame:
    records = []
    for user in result.users:
        for day in user.days:
            records.append(
                {
                    "user": sanitize_cell(user.user_name),
                    "date": day.date,
                    "capacity": day.capacity,
                    "regular_hours": day.regular_hours,
                    "overtime_hours": day.overtime_hours,
                    "total_hours": day.total_hours,
                    "holiday": sanitize_cell(day.holiday_name) if day.is_holiday else "",
                    "time_off": day.is_time_off,
                    "working_day": day.is_working_day,
                }
            )
    return pd.DataFrame(records)


def group_summaries_csv(result: AnalysisResult) -> str:
    return group_summary_frame(result).to_csv(index=False)


def export_group_summaries(path: Path, result: AnalysisResult) -> Path:
    df = group_summary_frame(result)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path


def export_daily_breakdown(path: Path, result: AnalysisResult) -> Path:
    df = daily_frame(result)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
