"""Cache-first website presence resolution for a single business.

Order of evidence: fresh cache entry, provider-declared website, Google Places
directory lookup, then automated page interrogation with retries. Network and
cache failures degrade to "unknown"; they never escape `resolve`.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from gapfinder.core.cache import BusinessCache, is_fresh
from gapfinder.core.config import Settings
from gapfinder.etl.transform import UNKNOWN_ADDRESS
from gapfinder.models import BusinessRecord, CacheEntry, HasWebsite, ResolutionResult, ResolutionSource
from gapfinder.vendors import google_places, maps_page, mino

logger = logging.getLogger(__name__)

# (url, goal, timeout=..., cancel_event=...) -> payload carrying resultJson.has_website
Automation = Callable[..., Dict[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_base_ms: int = 400

    @property
    def max_attempts(self) -> int:
        return 1 + max(self.max_retries, 0)

    def backoff_seconds(self, attempt: int) -> float:
        return self.backoff_base_ms * attempt / 1000.0


class PlacesDirectory:
    """Website lookup through the Google Places details endpoint."""

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def lookup(self, business: BusinessRecord) -> Tuple[Optional[str], Optional[str]]:
        """Return (place_id, website); website is "" when the place has none listed."""
        place_id = business.place_id
        if not place_id:
            address = "" if business.address == UNKNOWN_ADDRESS else business.address
            query = f"{business.name} {address}".strip()
            place_id = google_places.find_place_id(query, self.api_key, timeout=self.timeout)
        if not place_id:
            return None, None
        return place_id, google_places.place_website(place_id, self.api_key, timeout=self.timeout)


class WebsiteResolver:
    def __init__(
        self,
        cache: BusinessCache,
        *,
        automation: Optional[Automation] = None,
        directory: Optional[PlacesDirectory] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        verify_timeout: float = 8.0,
        goal: str = mino.WEBSITE_GOAL,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.automation = automation
        self.directory = directory
        self.retry_policy = retry_policy
        self.verify_timeout = verify_timeout
        self.goal = goal
        self._clock = clock
        self._sleep = sleep
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def resolve(self, business: BusinessRecord, cancel_event: Optional[threading.Event] = None) -> ResolutionResult:
        """Resolve one business; concurrent calls for the same identity share one verification."""
        with self._lock:
            pending = self._inflight.get(business.identity)
            if pending is None:
                future: Future = Future()
                self._inflight[business.identity] = future
        if pending is not None:
            logger.debug("%s is already being resolved; waiting for that result", business.identity)
            return pending.result()

        try:
            result = self._resolve(business, cancel_event)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(business.identity, None)

    def _resolve(self, business: BusinessRecord, cancel_event: Optional[threading.Event]) -> ResolutionResult:
        identity = business.identity
        entry = self._read_cache(identity)
        if is_fresh(entry, self._clock()):
            return ResolutionResult(identity, entry.has_website, ResolutionSource.CACHE)

        if (business.declared_website or "").strip():
            self._write_cache(business, HasWebsite.YES)
            return ResolutionResult(identity, HasWebsite.YES, ResolutionSource.DECLARED)

        place_id = business.place_id
        if self.directory is not None and not _cancelled(cancel_event):
            place_id, website = self._lookup_directory(business)
            if website is not None:
                status = HasWebsite.YES if website else HasWebsite.NO
                self._write_cache(business, status)
                return ResolutionResult(identity, status, ResolutionSource.VERIFIED)

        if entry is None:
            # Placeholder so duplicate resolutions see the identity as tracked.
            self._write_cache(business, HasWebsite.UNKNOWN)

        if self.automation is None or _cancelled(cancel_event):
            return ResolutionResult(identity, HasWebsite.UNKNOWN, ResolutionSource.UNRESOLVED)

        if place_id:
            url = maps_page.build_place_url(place_id)
        else:
            url = maps_page.build_search_url(business.name, business.address)
        status = self._interrogate(url, identity, cancel_event)
        self._write_cache(business, status)
        source = ResolutionSource.VERIFIED if status.is_known else ResolutionSource.UNRESOLVED
        return ResolutionResult(identity, status, source)

    def _interrogate(self, url: str, identity: str, cancel_event: Optional[threading.Event]) -> HasWebsite:
        policy = self.retry_policy
        attempts = 0
        for attempt in range(1, policy.max_attempts + 1):
            if _cancelled(cancel_event):
                break
            attempts = attempt
            value = self._attempt(url, identity, attempt, cancel_event)
            if value is not None:
                # A clean False is as final as True.
                return HasWebsite.from_optional(value)
            if attempt == policy.max_attempts:
                break
            delay = policy.backoff_seconds(attempt)
            if delay <= 0:
                continue
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    break
            else:
                self._sleep(delay)
        logger.info("Website check for %s stayed unknown after %d attempt(s)", identity, attempts)
        return HasWebsite.UNKNOWN

    def _attempt(self, url: str, identity: str, attempt: int, cancel_event: Optional[threading.Event]) -> Optional[bool]:
        try:
            payload = self.automation(url, self.goal, timeout=self.verify_timeout, cancel_event=cancel_event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Website check attempt %d for %s failed: %s", attempt, identity, exc)
            return None
        value = mino.extract_has_website(payload)
        if value is None:
            logger.warning("Website check attempt %d for %s returned no boolean: %s", attempt, identity, str(payload)[:200])
        return value

    def _lookup_directory(self, business: BusinessRecord) -> Tuple[Optional[str], Optional[str]]:
        try:
            return self.directory.lookup(business)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Places lookup failed for %s: %s", business.identity, exc)
            return business.place_id, None

    def _read_cache(self, identity: str) -> Optional[CacheEntry]:
        try:
            return self.cache.get(identity)
        except Exception as exc:  # noqa: BLE001
            logger.error("Cache read failed for %s: %s", identity, exc)
            return None

    def _write_cache(self, business: BusinessRecord, status: HasWebsite) -> None:
        try:
            self.cache.put(business.identity, status, business.name, self._clock())
        except Exception as exc:  # noqa: BLE001
            logger.error("Cache write failed for %s: %s", business.identity, exc)


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _browser_automation(url: str, goal: str, *, timeout: float, cancel_event=None, headless: bool = True) -> Dict[str, Any]:
    return maps_page.interrogate(url, goal, timeout=timeout, headless=headless)


def build_automation(settings: Settings) -> Optional[Automation]:
    if settings.verification_backend == "browser":
        return functools.partial(_browser_automation, headless=settings.browser_headless)
    if settings.mino_api_key:
        return functools.partial(mino.run_automation, api_key=settings.mino_api_key)
    return None


def build_resolver(settings: Settings, cache: BusinessCache) -> WebsiteResolver:
    directory = PlacesDirectory(settings.google_api_key) if settings.google_api_key else None
    return WebsiteResolver(
        cache,
        automation=build_automation(settings),
        directory=directory,
        retry_policy=RetryPolicy(settings.verify_max_retries, settings.verify_backoff_ms),
        verify_timeout=settings.verify_timeout_seconds,
    )
