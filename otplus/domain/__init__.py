"""Domain layer definitions."""

from .overrides import DayOverride, OverrideRecord
from .status import ApiStatus

__all__ = [
    "ApiStatus",
    "DayOverride",
    "OverrideRecord",
]
