"""Source adapters: one upstream business-data provider each, queried per tile.

Every adapter owns its rate limiter and swallows its own failures, so one
provider outage never takes the others down with it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from gapfinder.core.config import Settings
from gapfinder.core.tiles import KM_PER_DEGREE_LAT, km_per_degree_lon
from gapfinder.etl import categories, transform
from gapfinder.models import BusinessRecord, Tile
from gapfinder.vendors import google_places, nominatim, overpass, photon

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
GOOGLE_MAX_RADIUS_M = 50000


class RateLimiter:
    """Enforce a minimum spacing between consecutive requests of one adapter."""

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(min_interval, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: Optional[float] = None

    def wait(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Block until a request may be sent. Returns False if cancelled meanwhile."""
        if self._last_request_at is not None:
            remaining = self.min_interval - (self._clock() - self._last_request_at)
            if remaining > 0:
                if cancel_event is not None:
                    if cancel_event.wait(remaining):
                        return False
                else:
                    self._sleep(remaining)
        if cancel_event is not None and cancel_event.is_set():
            return False
        self._last_request_at = self._clock()
        return True


class _FetchContext:
    def __init__(self, budget_seconds: float, cancel_event: Optional[threading.Event]) -> None:
        self.deadline = time.monotonic() + budget_seconds
        self.cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def pause(self, seconds: float) -> bool:
        """Sleep between pages; False when cancelled or the budget cannot cover it."""
        if seconds >= self.remaining():
            return False
        if self.cancel_event is not None:
            return not self.cancel_event.wait(seconds)
        time.sleep(seconds)
        return True


class SourceAdapter:
    """Base adapter. Subclasses implement `_fetch` and may raise freely."""

    name = "source"

    def __init__(
        self,
        *,
        min_interval: float = 0.0,
        request_budget: float = 20.0,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.rate_limiter = rate_limiter or RateLimiter(min_interval)
        self.request_budget = request_budget
        self.request_timeout = request_timeout

    def fetch_for_tile(
        self,
        tile: Tile,
        business_types: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[BusinessRecord]:
        if cancel_event is not None and cancel_event.is_set():
            return []
        context = _FetchContext(self.request_budget, cancel_event)
        try:
            records = self._fetch(tile, list(business_types), context)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s failed for %s: %s", self.name, tile.id, exc)
            return []
        logger.info("%s returned %d businesses for %s", self.name, len(records), tile.id)
        return records

    def _acquire(self, context: _FetchContext) -> Optional[float]:
        """Wait for the rate limiter and return the timeout for the next request, or None to stop."""
        if context.remaining() <= 0:
            logger.info("%s request budget exhausted", self.name)
            return None
        if not self.rate_limiter.wait(context.cancel_event):
            return None
        remaining = context.remaining()
        if remaining <= 0:
            return None
        return min(self.request_timeout, remaining)

    def _fetch(self, tile: Tile, business_types: List[str], context: _FetchContext) -> List[BusinessRecord]:
        raise NotImplementedError


class NominatimSource(SourceAdapter):
    """Keyword search bounded to the tile, paging until a short page comes back."""

    name = "nominatim"

    def __init__(self, *, user_agent: str, page_size: int = nominatim.PAGE_SIZE, max_pages: int = 5, **kwargs) -> None:
        kwargs.setdefault("min_interval", nominatim.MIN_REQUEST_INTERVAL_SECONDS)
        super().__init__(**kwargs)
        self.user_agent = user_agent
        self.page_size = page_size
        self.max_pages = max_pages

    def _fetch(self, tile, business_types, context):
        bounds = tile.bounds
        viewbox = (bounds.west, bounds.north, bounds.east, bounds.south)
        records: List[BusinessRecord] = []
        for business_type in business_types:
            excluded: List[int] = []
            for _ in range(self.max_pages):
                timeout = self._acquire(context)
                if timeout is None:
                    return records
                items = nominatim.search(
                    business_type,
                    user_agent=self.user_agent,
                    viewbox=viewbox,
                    bounded=True,
                    limit=self.page_size,
                    exclude_place_ids=list(excluded),
                    timeout=timeout,
                )
                for item in items:
                    record = transform.from_nominatim(item)
                    if record is not None:
                        records.append(record)
                    if item.get("place_id") is not None:
                        excluded.append(item["place_id"])
                if len(items) < self.page_size:
                    break
        return records


class OverpassSource(SourceAdapter):
    """One structured query per tile built from the category vocabulary."""

    name = "overpass"

    def __init__(self, *, endpoint: str = overpass.OVERPASS_ENDPOINT, **kwargs) -> None:
        kwargs.setdefault("min_interval", overpass.MIN_REQUEST_INTERVAL_SECONDS)
        kwargs.setdefault("request_timeout", 25.0)
        super().__init__(**kwargs)
        self.endpoint = endpoint

    def _fetch(self, tile, business_types, context):
        timeout = self._acquire(context)
        if timeout is None:
            return []
        query = categories.build_overpass_query(tile.bounds, business_types, timeout_s=max(int(timeout), 1))
        elements = overpass.run_query(query, endpoint=self.endpoint, timeout=timeout)
        records = []
        for element in elements:
            record = transform.from_overpass(element)
            if record is not None:
                records.append(record)
        return records


class PhotonSource(SourceAdapter):
    """Keyword search against the Photon geocoder, bounded to the tile."""

    name = "photon"

    def __init__(self, *, limit: int = photon.DEFAULT_LIMIT, **kwargs) -> None:
        kwargs.setdefault("min_interval", photon.MIN_REQUEST_INTERVAL_SECONDS)
        super().__init__(**kwargs)
        self.limit = limit

    def _fetch(self, tile, business_types, context):
        records: List[BusinessRecord] = []
        for business_type in business_types:
            timeout = self._acquire(context)
            if timeout is None:
                break
            for feature in photon.search(business_type, tile.bounds, limit=self.limit, timeout=timeout):
                record = transform.from_photon(feature)
                if record is not None:
                    records.append(record)
        return records


class GooglePlacesSource(SourceAdapter):
    """Radius search around the tile center, following next_page_token."""

    name = "google_places"

    def __init__(self, *, api_key: str, max_pages: int = 3, page_delay: float = google_places.PAGE_TOKEN_DELAY_SECONDS, **kwargs) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.max_pages = max_pages
        self.page_delay = page_delay

    @staticmethod
    def tile_radius_m(tile: Tile) -> int:
        """Radius of the circle circumscribing the tile, capped at the API maximum."""
        bounds = tile.bounds
        center = bounds.center
        half_width_km = (bounds.east - bounds.west) / 2 * km_per_degree_lon(center.latitude)
        half_height_km = (bounds.north - bounds.south) / 2 * KM_PER_DEGREE_LAT
        radius_m = int(math.ceil(math.hypot(half_width_km, half_height_km) * 1000))
        return min(max(radius_m, 1), GOOGLE_MAX_RADIUS_M)

    def _fetch(self, tile, business_types, context):
        center = tile.bounds.center
        radius_m = self.tile_radius_m(tile)
        records: List[BusinessRecord] = []
        for business_type in business_types:
            place_type = categories.google_type_for(business_type)
            keyword = None if place_type else categories.normalize_business_type(business_type)
            page_token: Optional[str] = None
            for page in range(self.max_pages):
                if page_token and not context.pause(self.page_delay):
                    return records
                timeout = self._acquire(context)
                if timeout is None:
                    return records
                payload = google_places.nearby_search(
                    latitude=center.latitude,
                    longitude=center.longitude,
                    radius_m=radius_m,
                    api_key=self.api_key,
                    place_type=place_type,
                    keyword=keyword,
                    pagetoken=page_token,
                    timeout=timeout,
                )
                for result in payload.get("results", []):
                    record = transform.from_google_place(result)
                    if record is not None:
                        records.append(record)
                page_token = payload.get("next_page_token")
                if not page_token:
                    break
        return records


def build_adapters(settings: Settings) -> List[SourceAdapter]:
    """Instantiate the adapters for one request; Google Places only with a key."""
    budget = settings.adapter_request_budget_seconds
    adapters: List[SourceAdapter] = [
        NominatimSource(user_agent=settings.nominatim_user_agent, request_budget=budget),
        OverpassSource(request_budget=budget),
        PhotonSource(request_budget=budget),
    ]
    if settings.google_api_key:
        adapters.append(GooglePlacesSource(api_key=settings.google_api_key, request_budget=budget))
    else:
        logger.info("GOOGLE_API_KEY missing; skipping the Google Places source")
    return adapters


def fetch_tile(
    adapters: Sequence[SourceAdapter],
    tile: Tile,
    business_types: Sequence[str],
    *,
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[List[BusinessRecord]]:
    """Query every adapter concurrently; results keep adapter order."""
    if not adapters:
        return []
    owned = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=len(adapters), thread_name_prefix="source")
    try:
        futures = [pool.submit(adapter.fetch_for_tile, tile, business_types, cancel_event) for adapter in adapters]
        results: List[List[BusinessRecord]] = []
        for adapter, future in zip(adapters, futures):
            try:
                results.append(future.result())
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s raised outside its failure policy: %s", adapter.name, exc)
                results.append([])
        return results
    finally:
        if owned:
            pool.shutdown(wait=False)
