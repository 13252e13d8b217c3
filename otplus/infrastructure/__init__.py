"""Infrastructure layer exports."""

from .clockify import CancellationToken, ClockifyClient, FetchOptions, FetchOutcome, RateLimiter
from .storage import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore

__all__ = [
    "CancellationToken",
    "ClockifyClient",
    "FetchOptions",
    "FetchOutcome",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RateLimiter",
]
