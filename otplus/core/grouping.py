from __future__ import annotations

from collections.abc import Callable
from datetime import date

from otplus.core.durations import format_week_key, iso_week_key
from otplus.core.schema import GroupBy, TimeEntry

NO_PROJECT = "(No Project)"
NO_CLIENT = "(No Client)"
NO_TASK = "(No Task)"

GroupKey = tuple[str, str]


def _by_user(entry: TimeEntry, day: date) -> GroupKey:
    return entry.user_id or "unknown", entry.user_name or "Unknown"


def _by_project(entry: TimeEntry, day: date) -> GroupKey:
    return entry.project_id or entry.project_name or NO_PROJECT, entry.project_name or NO_PROJECT


def _by_client(entry: TimeEntry, day: date) -> GroupKey:
    return entry.client_id or entry.client_name or NO_CLIENT, entry.client_name or NO_CLIENT


def _by_task(entry: TimeEntry, day: date) -> GroupKey:
    return entry.task_id or entry.task_name or NO_TASK, entry.task_name or NO_TASK


def _by_date(entry: TimeEntry, day: date) -> GroupKey:
    key = day.isoformat()
    return key, key


def _by_week(entry: TimeEntry, day: date) -> GroupKey:
    key = iso_week_key(day)
    return key, format_week_key(key)


KEY_FUNCTIONS: dict[GroupBy, Callable[[TimeEntry, date], GroupKey]] = {
    GroupBy.USER: _by_user,
    GroupBy.PROJECT: _by_project,
    GroupBy.CLIENT: _by_client,
    GroupBy.TASK: _by_task,
    GroupBy.DATE: _by_date,
    GroupBy.WEEK: _by_week,
}
