"""Website-check cache collaborator: interface and in-memory implementation."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Set, Tuple

from gapfinder.core.config import Settings
from gapfinder.models import CacheEntry, HasWebsite

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=24)


class CacheError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


def is_fresh(entry: Optional[CacheEntry], now: datetime, max_age: timedelta = STALE_AFTER) -> bool:
    """A cached value is usable only when known and verified less than `max_age` ago."""
    if entry is None or not entry.has_website.is_known or entry.last_verified_at is None:
        return False
    return now - entry.last_verified_at < max_age


class BusinessCache:
    """get/put interface the pipeline consumes; upsert semantics on put."""

    def get(self, identity: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, identity: str, has_website: HasWebsite, name: Optional[str], timestamp: datetime) -> None:
        raise NotImplementedError

    def seen_identities(self, query_key: str) -> Set[str]:
        raise NotImplementedError

    def mark_seen(self, query_key: str, identities: Iterable[str]) -> None:
        raise NotImplementedError


class InMemoryBusinessCache(BusinessCache):
    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._seen: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def get(self, identity: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(identity)

    def put(self, identity: str, has_website: HasWebsite, name: Optional[str], timestamp: datetime) -> None:
        with self._lock:
            previous = self._entries.get(identity)
            self._entries[identity] = CacheEntry(
                identity=identity,
                has_website=has_website,
                last_verified_at=timestamp,
                name=name or (previous.name if previous else None),
            )

    def seen_identities(self, query_key: str) -> Set[str]:
        with self._lock:
            return {identity for key, identity in self._seen if key == query_key}

    def mark_seen(self, query_key: str, identities: Iterable[str]) -> None:
        with self._lock:
            self._seen.update((query_key, identity) for identity in identities)


_DEFAULT_MEMORY_CACHE = InMemoryBusinessCache()


def build_cache(settings: Settings) -> BusinessCache:
    """Postgres-backed cache when DATABASE_URL is set, else a process-wide memory cache."""
    if settings.database_url:
        from gapfinder.core.db import PostgresBusinessCache

        try:
            return PostgresBusinessCache()
        except RuntimeError as exc:
            logger.error("Postgres cache unavailable, using the in-memory cache: %s", exc)
    return _DEFAULT_MEMORY_CACHE
