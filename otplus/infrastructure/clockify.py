"""Async client for the Clockify REST and reports APIs."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Generic, TypeVar
from urllib.parse import urlparse

import httpx

from otplus.core.durations import date_range
from otplus.core.errors import FetchCancelled, FriendlyError, create_user_friendly_error
from otplus.core.schema import Holiday, TimeEntry, TimeOffInfo, User, UserProfile
from otplus.domain import ApiStatus

from .normalize import (
    extract_date,
    half_day_hours,
    normalize_profile,
    normalize_report_entry,
    normalize_time_entry,
    normalize_user,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRODUCTION_REPORTS_URL = "https://reports.api.clockify.me"
DEVELOPER_HOST = "developer.clockify.me"
REPORT_PAGE_SIZE = 200
ENTRIES_PAGE_SIZE = 500
DEFAULT_MAX_PAGES = 50
HARD_MAX_PAGES = 500
DEFAULT_RETRY_AFTER = 5.0
REQUESTS_PER_SECOND = 50

Sleep = Callable[[float], Awaitable[None]]


class CancellationToken:
    """Cooperative cancellation flag shared by the tasks of one fetch run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class FetchOptions:
    cancel: CancellationToken | None = None
    max_pages: int = DEFAULT_MAX_PAGES

    @property
    def page_limit(self) -> int:
        if self.max_pages <= 0:
            return HARD_MAX_PAGES
        return min(self.max_pages, HARD_MAX_PAGES)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled


@dataclass(slots=True)
class FetchOutcome(Generic[T]):
    """Result plus an explicit success flag, so empty data and failure differ."""

    items: T
    ok: bool = True
    error: FriendlyError | None = None


class RateLimiter:
    """Token bucket shared by every request a client issues."""

    def __init__(
        self,
        capacity: int = REQUESTS_PER_SECOND,
        refill_per_second: float = REQUESTS_PER_SECOND,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._capacity = float(capacity)
        self._rate = float(refill_per_second)
        self._tokens = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    async def acquire(self) -> None:
        while True:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return
            await self._sleep((1 - self._tokens) / self._rate)


def resolve_reports_base_url(claims: Mapping[str, Any]) -> str:
    """Pick the reports API host for the environment the token was issued for."""

    reports_url = str(claims.get("reportsUrl") or "").rstrip("/")
    backend_url = str(claims.get("backendUrl") or "").rstrip("/")
    backend = urlparse(backend_url)
    backend_host = (backend.hostname or "").lower()

    if reports_url:
        reports_host = (urlparse(reports_url).hostname or "").lower()
        if backend_host == DEVELOPER_HOST and reports_host != backend_host and backend_url:
            return backend_url
        return reports_url

    if backend_host == "api.clockify.me":
        return PRODUCTION_REPORTS_URL
    if backend_host.endswith(".clockify.me") and backend.path.rstrip("/").endswith("/api"):
        path = backend.path.rstrip("/")[: -len("/api")] + "/report"
        return f"{backend.scheme}://{backend.netloc}{path}"
    return PRODUCTION_REPORTS_URL


def _retry_after_seconds(response: httpx.Response) -> float:
    header = response.headers.get("Retry-After")
    try:
        value = float(header) if header is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER
    return value if value >= 0 else DEFAULT_RETRY_AFTER


class ClockifyClient:
    """Fetches entries, users, profiles and calendars for one workspace token.

    Transport and HTTP failures never escape the public coroutines: they are
    logged, recorded on :class:`ApiStatus` and degrade to empty or partial data.
    """

    def __init__(
        self,
        token: str,
        claims: Mapping[str, Any],
        *,
        http_client: httpx.AsyncClient | None = None,
        status: ApiStatus | None = None,
        sleep: Sleep | None = None,
        rate_limiter: RateLimiter | None = None,
        max_retries: int = 2,
        timeout: float = 30.0,
    ) -> None:
        backend_url = str(claims.get("backendUrl") or "").rstrip("/")
        parsed = urlparse(backend_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("backendUrl claim must include scheme and host")
        if not token:
            raise ValueError("token is required")

        self._token = token
        self._backend_url = backend_url
        self._reports_url = resolve_reports_base_url(claims)
        self.status = status or ApiStatus()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._limiter = rate_limiter or RateLimiter()
        self._max_retries = max(0, max_retries)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def reports_url(self) -> str:
        return self._reports_url

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _workspace_url(self, workspace_id: str, path: str) -> str:
        return f"{self._backend_url}/v1/workspaces/{workspace_id}/{path.lstrip('/')}"

    def _headers(self, has_body: bool) -> dict[str, str]:
        headers = {"X-Addon-Token": self._token, "Accept": "application/json"}
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        options: FetchOptions | None = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body.

        429 responses wait for ``Retry-After`` and retry the same request at
        least once. 5xx responses and transport errors are retried with
        exponential backoff. Auth and other client errors raise immediately.
        """

        headers = self._headers(json_body is not None)
        throttled = 0
        attempt = 0
        while True:
            if options is not None and options.cancelled:
                raise FetchCancelled()
            await self._limiter.acquire()
            try:
                response = await self._client.request(method, url, params=params, json=json_body, headers=headers)
            except httpx.TransportError:
                if attempt >= self._max_retries:
                    raise
                await self._sleep(float(2**attempt))
                attempt += 1
                continue

            if response.status_code == 429 and throttled < max(1, self._max_retries):
                wait = _retry_after_seconds(response)
                throttled += 1
                self.status.throttle_retries += 1
                logger.info("Rate limited; retrying in %.1fs", wait)
                await self._sleep(wait)
                continue
            if response.status_code >= 500 and attempt < self._max_retries:
                await self._sleep(float(2**attempt))
                attempt += 1
                continue
            response.raise_for_status()
            return response.json()

    def _record_failure(self, error: BaseException, context: str) -> FriendlyError:
        friendly = create_user_friendly_error(error)
        self.status.last_error = friendly
        status_code = error.response.status_code if isinstance(error, httpx.HTTPStatusError) else None
        logger.warning(
            "%s failed: %s (%s)",
            context,
            friendly.type.value,
            type(error).__name__,
            extra={"error_type": friendly.type.value, "status_code": status_code},
        )
        return friendly

    # ------------------------------------------------------------------
    # entries
    # ------------------------------------------------------------------
    async def fetch_detailed_report(
        self,
        workspace_id: str,
        start_iso: str,
        end_iso: str,
        options: FetchOptions | None = None,
    ) -> list[TimeEntry]:
        """Fetch all entries of the workspace through the detailed report.

        Pages are requested one at a time; a failed page ends the run and the
        entries of earlier pages are returned.
        """

        options = options or FetchOptions()
        url = f"{self._reports_url}/v1/workspaces/{workspace_id}/reports/detailed"
        entries: list[TimeEntry] = []
        page = 1
        while page <= options.page_limit:
            body = {
                "dateRangeStart": start_iso,
                "dateRangeEnd": end_iso,
                "amountShown": "EARNED",
                "amounts": ["EARNED", "COST", "PROFIT"],
                "detailedFilter": {"page": page, "pageSize": REPORT_PAGE_SIZE},
            }
            try:
                payload = await self._request("POST", url, json_body=body, options=options)
            except FetchCancelled:
                break
            except (httpx.HTTPError, ValueError) as exc:
                self._record_failure(exc, f"Detailed report page {page}")
                break
            if options.cancelled:
                break

            rows: Any = []
            if isinstance(payload, dict):
                rows = payload.get("timeentries") or payload.get("timeEntries") or []
            if not isinstance(rows, list):
                rows = []
            entries.extend(entry for entry in map(normalize_report_entry, rows) if entry is not None)
            if len(rows) < REPORT_PAGE_SIZE:
                break
            page += 1
        else:
            logger.warning("Reached page limit (%d); %d entries fetched", options.page_limit, len(entries))
        return entries

    async def _fetch_user_entries(
        self,
        workspace_id: str,
        user: User,
        start_iso: str,
        end_iso: str,
        options: FetchOptions,
    ) -> list[TimeEntry]:
        url = self._workspace_url(workspace_id, f"user/{user.id}/time-entries")
        entries: list[TimeEntry] = []
        page = 1
        while page <= options.page_limit:
            params = {
                "start": start_iso,
                "end": end_iso,
                "hydrated": "true",
                "page": page,
                "page-size": ENTRIES_PAGE_SIZE,
            }
            try:
                payload = await self._request("GET", url, params=params, options=options)
            except FetchCancelled:
                break
            except (httpx.HTTPError, ValueError) as exc:
                self._record_failure(exc, f"Time entries page {page}")
                break
            if options.cancelled:
                break
            if not isinstance(payload, list):
                self._record_failure(ValueError("time entries payload is not a list"), f"Time entries page {page}")
                break

            entries.extend(entry for entry in (normalize_time_entry(raw, user) for raw in payload) if entry)
            if len(payload) < ENTRIES_PAGE_SIZE:
                break
            page += 1
        return entries

    async def fetch_entries(
        self,
        workspace_id: str,
        users: Iterable[User],
        start_iso: str,
        end_iso: str,
        options: FetchOptions | None = None,
    ) -> list[TimeEntry]:
        """Fetch per-user time entries; users run concurrently, pages sequentially.

        A failing page keeps every entry from the pages before it.
        """

        options = options or FetchOptions()
        user_list = list(users)
        batches = await asyncio.gather(
            *(self._fetch_user_entries(workspace_id, user, start_iso, end_iso, options) for user in user_list)
        )
        return [entry for batch in batches for entry in batch]

    # ------------------------------------------------------------------
    # users and profiles
    # ------------------------------------------------------------------
    async def fetch_users(self, workspace_id: str, options: FetchOptions | None = None) -> FetchOutcome[list[User]]:
        options = options or FetchOptions()
        try:
            payload = await self._request("GET", self._workspace_url(workspace_id, "users"), options=options)
        except (FetchCancelled, httpx.HTTPError, ValueError) as exc:
            friendly = self._record_failure(exc, "User list")
            self.status.users_status = "failed"
            return FetchOutcome(items=[], ok=False, error=friendly)

        users = [user for user in map(normalize_user, payload if isinstance(payload, list) else []) if user]
        self.status.users_status = "ok"
        return FetchOutcome(items=users)

    async def _get_profile(self, workspace_id: str, user_id: str, options: FetchOptions | None) -> UserProfile:
        payload = await self._request(
            "GET", self._workspace_url(workspace_id, f"member-profile/{user_id}"), options=options
        )
        return normalize_profile(user_id, payload)

    async def fetch_user_profile(
        self, workspace_id: str, user_id: str, options: FetchOptions | None = None
    ) -> UserProfile | None:
        try:
            return await self._get_profile(workspace_id, user_id, options)
        except FetchCancelled:
            return None
        except (httpx.HTTPError, ValueError) as exc:
            self._record_failure(exc, "Member profile")
            return None

    async def fetch_all_profiles(
        self,
        workspace_id: str,
        users: Iterable[User],
        options: FetchOptions | None = None,
    ) -> dict[str, UserProfile]:
        """Fetch every member profile concurrently.

        Only successful profiles are returned; each failure increments
        ``ApiStatus.profiles_failed`` without affecting the other requests.
        """

        user_ids = [user.id for user in users]
        self.status.profiles_attempted += len(user_ids)
        outcomes = await asyncio.gather(
            *(self._get_profile(workspace_id, user_id, options) for user_id in user_ids),
            return_exceptions=True,
        )
        profiles: dict[str, UserProfile] = {}
        for user_id, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, FetchCancelled):
                continue
            if isinstance(outcome, BaseException):
                self.status.profiles_failed += 1
                self._record_failure(outcome, "Member profile")
                continue
            profiles[user_id] = outcome
        return profiles

    # ------------------------------------------------------------------
    # calendars
    # ------------------------------------------------------------------
    async def fetch_holidays(
        self,
        workspace_id: str,
        user_id: str,
        start: date,
        end: date,
        options: FetchOptions | None = None,
    ) -> dict[str, Holiday]:
        """Holidays assigned to a user, expanded to one record per date in range. Raises on failure."""

        params = {
            "assigned-to": user_id,
            "start": f"{start.isoformat()}T00:00:00.000Z",
            "end": f"{end.isoformat()}T23:59:59.999Z",
        }
        payload = await self._request(
            "GET", self._workspace_url(workspace_id, "holidays/in-period"), params=params, options=options
        )
        if not isinstance(payload, list):
            raise ValueError("holiday payload is not a list")

        holidays: dict[str, Holiday] = {}
        for raw in payload:
            if not isinstance(raw, dict):
                continue
            period = raw.get("datePeriod") if isinstance(raw.get("datePeriod"), dict) else {}
            first = extract_date(period.get("startDate"))
            if first is None:
                continue
            last = extract_date(period.get("endDate")) or first
            window = date_range(max(date.fromisoformat(first), start), min(date.fromisoformat(last), end))
            for day in window:
                key = day.isoformat()
                holidays.setdefault(
                    key, Holiday(name=str(raw.get("name") or ""), date=key, project_id=raw.get("projectId"))
                )
        return holidays

    async def fetch_all_holidays(
        self,
        workspace_id: str,
        users: Iterable[User],
        start: date,
        end: date,
        options: FetchOptions | None = None,
    ) -> dict[str, dict[str, Holiday]]:
        user_ids = [user.id for user in users]
        outcomes = await asyncio.gather(
            *(self.fetch_holidays(workspace_id, user_id, start, end, options) for user_id in user_ids),
            return_exceptions=True,
        )
        results: dict[str, dict[str, Holiday]] = {}
        failed = 0
        for user_id, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, FetchCancelled):
                continue
            if isinstance(outcome, BaseException):
                failed += 1
                self._record_failure(outcome, "Holidays")
                continue
            results[user_id] = outcome
        self.status.holidays_failed = failed
        return results

    async def fetch_time_off(
        self,
        workspace_id: str,
        users: Iterable[User],
        start: date,
        end: date,
        options: FetchOptions | None = None,
    ) -> dict[str, dict[str, TimeOffInfo]]:
        """Approved time off per user and date; on failure every user counts as failed."""

        user_ids = [user.id for user in users]
        body = {
            "page": 1,
            "pageSize": 200,
            "users": user_ids,
            "statuses": ["APPROVED"],
            "start": f"{start.isoformat()}T00:00:00.000Z",
            "end": f"{end.isoformat()}T23:59:59.999Z",
        }
        try:
            payload = await self._request(
                "POST", self._workspace_url(workspace_id, "time-off/requests"), json_body=body, options=options
            )
        except FetchCancelled:
            return {}
        except (httpx.HTTPError, ValueError) as exc:
            self._record_failure(exc, "Time off")
            self.status.time_off_failed = len(user_ids)
            return {}

        requests: Any = []
        if isinstance(payload, list):
            requests = payload
        elif isinstance(payload, dict):
            requests = payload.get("requests") or payload.get("timeOffRequests") or []

        results: dict[str, dict[str, TimeOffInfo]] = {}
        for request in requests if isinstance(requests, list) else []:
            if not isinstance(request, dict):
                continue
            status = request.get("status")
            if isinstance(status, dict):
                status = status.get("statusType")
            if status != "APPROVED":
                continue
            user_id = request.get("userId") or request.get("requesterUserId")
            if not user_id:
                continue

            period = request.get("timeOffPeriod") if isinstance(request.get("timeOffPeriod"), dict) else {}
            inner = period.get("period") if isinstance(period.get("period"), dict) else {}
            first = extract_date(inner.get("start") or period.get("start") or period.get("startDate"))
            if first is None:
                continue
            last = extract_date(inner.get("end") or period.get("end") or period.get("endDate")) or first

            raw_hours = period.get("halfDayHours")
            full_day = not period.get("halfDay") and (request.get("timeUnit") == "DAYS" or not raw_hours)
            hours = Decimal("0")
            if not full_day:
                parsed = half_day_hours(raw_hours)
                if parsed is None and raw_hours is not None:
                    logger.warning("Skipping time-off request with unusable halfDayHours for user %s", user_id)
                    continue
                hours = parsed or Decimal("0")

            per_user = results.setdefault(str(user_id), {})
            window = date_range(max(date.fromisoformat(first), start), min(date.fromisoformat(last), end))
            for day in window:
                per_user.setdefault(day.isoformat(), TimeOffInfo(is_full_day=full_day, hours=hours))

        self.status.time_off_failed = 0
        return results

    async def aclose(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "CancellationToken",
    "ClockifyClient",
    "FetchOptions",
    "FetchOutcome",
    "RateLimiter",
    "resolve_reports_base_url",
]
