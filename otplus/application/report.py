"""Fetch-then-analyse use case."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date

from otplus.application.store import OverrideStore
from otplus.core.overtime import calculate_analysis
from otplus.core.schema import AnalysisResult, DateRange, Holiday, TimeOffInfo, UserProfile
from otplus.core.validation import validate_date_range
from otplus.infrastructure.clockify import CancellationToken, ClockifyClient, FetchOptions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReportRun:
    result: AnalysisResult
    status: dict[str, object]
    users_ok: bool
    warnings: list[str] = field(default_factory=list)


class ReportService:
    """Coordinates the fetch client, the override store and the analysis engine."""

    def __init__(self, client: ClockifyClient, store: OverrideStore) -> None:
        self._client = client
        self._store = store

    async def generate(
        self,
        start: date | str,
        end: date | str,
        *,
        cancel: CancellationToken | None = None,
        use_detailed_report: bool = True,
    ) -> ReportRun:
        """Fetch everything needed for ``start``..``end`` and run the analysis.

        Raises ``ValidationError`` for a bad date range; fetch problems only
        show up as warnings and ``ApiStatus`` counters.
        """

        window: DateRange = validate_date_range(start, end)
        config = self._store.config
        workspace_id = self._store.workspace_id
        options = FetchOptions(cancel=cancel, max_pages=config.max_pages)
        status = self._client.status
        status.reset()
        warnings: list[str] = []

        users_outcome = await self._client.fetch_users(workspace_id, options)
        users = users_outcome.items
        if not users_outcome.ok:
            warnings.append("The user list could not be loaded; results only include users with entries.")
        elif not users:
            warnings.append("The workspace has no users.")

        start_iso = f"{window.start.isoformat()}T00:00:00.000Z"
        end_iso = f"{window.end.isoformat()}T23:59:59.999Z"
        if use_detailed_report:
            entries_task = self._client.fetch_detailed_report(workspace_id, start_iso, end_iso, options)
        else:
            entries_task = self._client.fetch_entries(workspace_id, users, start_iso, end_iso, options)

        entries, profiles, holidays, time_off = await asyncio.gather(
            entries_task,
            self._profiles(users, options),
            self._holidays(users, window, options),
            self._time_off(users, window, options),
        )

        if status.profiles_failed:
            warnings.append(f"{status.profiles_failed} member profile(s) could not be loaded; defaults were used.")
        if status.holidays_failed:
            warnings.append(f"Holidays could not be loaded for {status.holidays_failed} user(s).")
        if status.time_off_failed:
            warnings.append("Time off could not be loaded.")
        if cancel is not None and cancel.cancelled:
            warnings.append("The report was cancelled; results are partial.")

        result = calculate_analysis(
            entries,
            self._store,
            window,
            users=users,
            profiles=profiles,
            holidays=holidays,
            time_off=time_off,
        )
        logger.info("Analysed %d entries for %d users", len(entries), len(result.users))
        return ReportRun(result=result, status=status.to_dict(), users_ok=users_outcome.ok, warnings=warnings)

    async def _profiles(self, users, options: FetchOptions) -> dict[str, UserProfile]:
        config = self._store.config
        if not users or not (config.use_profile_capacity or config.use_profile_working_days):
            return {}
        return await self._client.fetch_all_profiles(self._store.workspace_id, users, options)

    async def _holidays(self, users, window: DateRange, options: FetchOptions) -> dict[str, dict[str, Holiday]]:
        if not users or not self._store.config.apply_holidays:
            return {}
        return await self._client.fetch_all_holidays(
            self._store.workspace_id, users, window.start, window.end, options
        )

    async def _time_off(self, users, window: DateRange, options: FetchOptions) -> dict[str, dict[str, TimeOffInfo]]:
        if not users or not self._store.config.apply_time_off:
            return {}
        return await self._client.fetch_time_off(self._store.workspace_id, users, window.start, window.end, options)


__all__ = ["ReportRun", "ReportService"]
