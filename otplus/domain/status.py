from __future__ import annotations

from dataclasses import dataclass

from otplus.core.errors import FriendlyError


@dataclass(slots=True)
class ApiStatus:
    """Counters written by the fetch client and read by reporting code."""

    profiles_attempted: int = 0
    profiles_failed: int = 0
    holidays_failed: int = 0
    time_off_failed: int = 0
    throttle_retries: int = 0
    users_status: str = "unknown"
    last_error: FriendlyError | None = None

    def reset(self) -> None:
        self.profiles_attempted = 0
        self.profiles_failed = 0
        self.holidays_failed = 0
        self.time_off_failed = 0
        self.throttle_retries = 0
        self.users_status = "unknown"
        self.last_error = None

    def to_dict(self) -> dict[str, object]:
        return {
            "profiles_attempted": self.profiles_attempted,
            "profiles_failed": self.profiles_failed,
            "holidays_failed": self.holidays_failed,
            "time_off_failed": self.time_off_failed,
            "throttle_retries": self.throttle_retries,
            "users_status": self.users_status,
            "last_error": self.last_error.model_dump(mode="json") if self.last_error else None,
        }
