"""Application services."""

from .report import ReportRun, ReportService
from .store import OverrideStore

__all__ = [
    "OverrideStore",
    "ReportRun",
    "ReportService",
]
