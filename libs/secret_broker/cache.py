"""
In-memory read-through cache for secret values with TTL freshness.

The cache sits in front of the backend store and gives the broker its
resilience property: once a key has been fetched, a failing backend degrades
reads to the last known value instead of an error.

Architecture:
    - Per-key entries: (value, fetched_at); value None records a confirmed absence
    - Fresh entries (age < TTL) are served without touching the backend
    - Expired entries are kept (not evicted) so they can serve as fallback
    - Entries are removed only by invalidate() / clear()
    - Unbounded, no request coalescing: concurrent misses on one key each
      reach the backend
    - threading.Lock guards the map, so the cache also holds up when driven
      from worker threads

Security Properties:
    - Memory-only (values never written to disk)
    - Values never logged (only key names)

Example Usage:
    >>> cache = SecretCache(ttl=timedelta(minutes=5))
    >>> lookup = await cache.get("database/url", backend.get)
    >>> lookup.status
    <LookupStatus.FETCHED: 'fetched'>
    >>> cache.invalidate("database/url")
    True
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from libs.secret_broker.models import LookupStatus, Secret, SecretLookup, SecretValue

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)

Fetcher = Callable[[str], Awaitable[Secret | None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheEntry:
    """Last value this process observed from the backend for one key."""

    value: SecretValue | None = field(repr=False)
    fetched_at: datetime


class SecretCache:
    """
    Thread-safe in-memory TTL cache with stale fallback.

    Attributes:
        ttl: Freshness window; entries older than this trigger a backend fetch
    """

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Clock | None = None) -> None:
        """
        Initialize SecretCache.

        Args:
            ttl: Freshness window (default: 5 minutes). A zero TTL makes every
                 read go to the backend while still keeping fallback values.
            clock: Time source returning aware datetimes (tests inject a fake).
        """
        if ttl < timedelta(0):
            raise ValueError("ttl must not be negative")
        self._entries: dict[str, CacheEntry] = {}
        self._ttl = ttl
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry for key regardless of age, or None."""
        with self._lock:
            return self._entries.get(key)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self._ttl

    def store(self, key: str, value: SecretValue | None) -> CacheEntry:
        entry = CacheEntry(value=value, fetched_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        """Remove the entry for key. Returns True if one existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry. Returns the number of entries removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    async def get(self, key: str, fetch: Fetcher) -> SecretLookup:
        """
        Read key through the cache.

        1. Fresh entry → CACHE_HIT, fetch is not awaited.
        2. Otherwise await fetch(key):
           - returns a Secret → stored, FETCHED
           - returns None → absence stored, ABSENT
           - raises → STALE_FALLBACK with the previous entry's value if an
             entry exists, else BACKEND_ERROR. The entry is left untouched.

        Args:
            key: Secret key
            fetch: Backend read (e.g., ``backend.get``)

        Returns:
            SecretLookup describing how the read was satisfied
        """
        entry = self.peek(key)
        if entry is not None and self.is_fresh(entry):
            logger.debug("Secret cache hit", extra={"secret_name": key})
            return SecretLookup(key=key, status=LookupStatus.CACHE_HIT, value=entry.value)

        try:
            secret = await fetch(key)
        except Exception as e:
            error = str(e) or type(e).__name__
            if entry is not None:
                age = (self._clock() - entry.fetched_at).total_seconds()
                logger.warning(
                    "Backend read failed, serving last known value",
                    extra={"secret_name": key, "entry_age_seconds": age, "error": error},
                )
                return SecretLookup(
                    key=key,
                    status=LookupStatus.STALE_FALLBACK,
                    value=entry.value,
                    error=error,
                )
            logger.warning(
                "Backend read failed with no cached value",
                extra={"secret_name": key, "error": error},
            )
            return SecretLookup(key=key, status=LookupStatus.BACKEND_ERROR, error=error)

        if secret is None:
            self.store(key, None)
            return SecretLookup(key=key, status=LookupStatus.ABSENT)

        self.store(key, secret.value)
        return SecretLookup(key=key, status=LookupStatus.FETCHED, value=secret.value)
