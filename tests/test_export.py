from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pandas as pd
import pytest

from otplus.application import OverrideStore
from otplus.core.overtime import calculate_analysis
from otplus.core.schema import DateRange, Holiday, HourlyRate, TimeEntry, TimeInterval
from otplus.exporters.analysis_csv import (
    export_daily_breakdown,
    export_group_summaries,
    group_summary_frame,
    sanitize_cell,
)
from otplus.infrastructure import InMemoryKeyValueStore


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("=SUM(A1)", "'=SUM(A1)"),
        ("+1", "'+1"),
        ("-2", "'-2"),
        ("@cmd", "'@cmd"),
        ("\tTab", "'\tTab"),
        ("Plain", "Plain"),
        (None, ""),
    ],
)
def test_sanitize_cell(value, expected):
    assert sanitize_cell(value) == expected


def _result():
    entries = [
        TimeEntry(
            id="e1",
            user_id="u1",
            user_name="@Ada",
            client_id="c1",
            client_name="Acme",
            time_interval=TimeInterval(start="2024-03-04T09:00:00Z", duration="PT10H"),
            hourly_rate=HourlyRate(amount=Decimal("5000")),
        ),
        TimeEntry(
            id="e2",
            user_id="u1",
            user_name="@Ada",
            time_interval=TimeInterval(start="2024-03-05T09:00:00Z", duration="PT1H"),
            hourly_rate=HourlyRate(amount=Decimal("5000")),
        ),
    ]
    store = OverrideStore("ws", InMemoryKeyValueStore())
    holidays = {"u1": {"2024-03-05": Holiday(name="=Party", date="2024-03-05")}}
    return calculate_analysis(
        entries,
        store,
        DateRange(start=date(2024, 3, 4), end=date(2024, 3, 5)),
        holidays=holidays,
        group_by="client",
    )


def test_group_summary_frame_columns():
    frame = group_summary_frame(_result())
    assert list(frame["group"]) == ["Acme", "(No Client)"]
    assert list(frame.columns[:3]) == ["group", "key", "entries"]
    assert frame.loc[0, "overtime_hours"] == Decimal("2")
    assert frame.loc[1, "overtime_hours"] == Decimal("1")


def test_export_files(tmp_path):
    result = _result()
    summary_path = export_group_summaries(tmp_path / "out" / "groups.csv", result)
    daily_path = export_daily_breakdown(tmp_path / "out" / "daily.csv", result)

    summary = pd.read_csv(summary_path)
    assert summary["earned"].tolist() == [550.0, 75.0]

    daily = pd.read_csv(daily_path, keep_default_na=False)
    assert daily["user"].tolist() == ["'@Ada", "'@Ada"]
    assert daily["holiday"].tolist() == ["", "'=Party"]
    assert daily["capacity"].tolist() == [8.0, 0.0]


def test_empty_result_still_has_headers():
    store = OverrideStore("ws", InMemoryKeyValueStore())
    frame = group_summary_frame(calculate_analysis([], store))
    assert frame.empty
    assert "overtime_hours" in frame.columns
