"""Tile-by-tile streaming of businesses without a website, resumable by cursor."""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from gapfinder.core import events
from gapfinder.core.cache import BusinessCache, build_cache
from gapfinder.core.config import Settings
from gapfinder.core.dedup import DedupScope, Deduplicator, query_key
from gapfinder.core.events import StreamEvent
from gapfinder.core.governor import for_each
from gapfinder.core.resolver import WebsiteResolver, build_resolver
from gapfinder.core.sources import SourceAdapter, build_adapters, fetch_tile
from gapfinder.core.tiles import build_tiles
from gapfinder.models import BusinessRecord, GeoPoint, HasWebsite, ResolutionResult, StreamCursor, Tile

logger = logging.getLogger(__name__)


class InvalidRequestError(ValueError):
    """Raised for requests that must be rejected before any streaming starts."""


@dataclass(frozen=True)
class StreamRequest:
    business_types: Sequence[str]
    location: str
    center: GeoPoint
    radius_km: float
    cursor: StreamCursor = field(default_factory=StreamCursor)


@dataclass(frozen=True)
class StreamPlan:
    request: StreamRequest
    tiles: List[Tile]
    start_index: int
    end_index: int
    query_key: str


class StreamOrchestrator:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        resolver: WebsiteResolver,
        *,
        cache: Optional[BusinessCache] = None,
        tile_size_km: float = 10.0,
        overlap_km: float = 1.0,
        max_tiles_per_invocation: int = 3,
        concurrency: int = 4,
        dedup_scope: DedupScope = DedupScope.INVOCATION,
        time_budget_seconds: float = 0.0,
        tiler: Callable[..., List[Tile]] = build_tiles,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapters = list(adapters)
        self.resolver = resolver
        self.cache = cache if cache is not None else resolver.cache
        self.tile_size_km = tile_size_km
        self.overlap_km = overlap_km
        self.max_tiles_per_invocation = max(1, max_tiles_per_invocation)
        self.concurrency = max(1, concurrency)
        self.dedup_scope = DedupScope(dedup_scope)
        self.time_budget_seconds = time_budget_seconds
        self._tiler = tiler
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, cache: Optional[BusinessCache] = None) -> "StreamOrchestrator":
        cache = cache or build_cache(settings)
        return cls(
            build_adapters(settings),
            build_resolver(settings, cache),
            cache=cache,
            tile_size_km=settings.tile_size_km,
            overlap_km=settings.tile_overlap_km,
            max_tiles_per_invocation=settings.max_tiles_per_invocation,
            concurrency=settings.resolver_concurrency,
            dedup_scope=DedupScope(settings.dedup_scope),
            time_budget_seconds=settings.invocation_time_budget_seconds,
        )

    def plan(self, request: StreamRequest) -> StreamPlan:
        """Validate the request and fix the batch of tiles for this invocation."""
        business_types = [t.strip() for t in request.business_types if t and t.strip()]
        if not business_types:
            raise InvalidRequestError("at least one business type is required")
        if not (request.location or "").strip():
            raise InvalidRequestError("a location is required")
        if not math.isfinite(request.radius_km) or request.radius_km <= 0:
            raise InvalidRequestError("radius must be a positive number")
        center = request.center
        if not (-90.0 <= center.latitude <= 90.0 and -180.0 <= center.longitude <= 180.0):
            raise InvalidRequestError("center coordinates are out of range")

        tiles = self._tiler(center, request.radius_km, self.tile_size_km, self.overlap_km)
        if not tiles:
            raise InvalidRequestError("the search area produced no tiles")
        start_index = min(max(request.cursor.next_tile_index, 0), len(tiles) - 1)
        end_index = min(start_index + self.max_tiles_per_invocation, len(tiles))
        normalized = StreamRequest(business_types, request.location.strip(), center, request.radius_km, request.cursor)
        key = query_key(business_types, normalized.location, request.radius_km, center)
        return StreamPlan(normalized, tiles, start_index, end_index, key)

    def run(self, request: StreamRequest, cancel_event: Optional[threading.Event] = None) -> Iterator[StreamEvent]:
        return self.stream(self.plan(request), cancel_event)

    def stream(self, plan: StreamPlan, cancel_event: Optional[threading.Event] = None) -> Iterator[StreamEvent]:
        cancel_event = cancel_event or threading.Event()
        request = plan.request
        total_tiles = len(plan.tiles)
        started = self._clock()

        yield StreamEvent(
            events.METADATA,
            {
                "businessTypes": list(request.business_types),
                "location": request.location,
                "radiusKm": request.radius_km,
                "tileCount": total_tiles,
                "startTileIndex": plan.start_index,
                "center": request.center.to_dict(),
            },
        )

        source_pool = ThreadPoolExecutor(max_workers=max(len(self.adapters), 1), thread_name_prefix="source")
        resolver_pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="resolver")
        try:
            deduplicator = Deduplicator(self._load_seen(plan.query_key))
            found = 0
            next_index = plan.start_index

            for tile in plan.tiles[plan.start_index:plan.end_index]:
                if cancel_event.is_set():
                    logger.info("Stream cancelled before %s", tile.id)
                    break
                if self._budget_spent(started) and tile.index > plan.start_index:
                    logger.info("Invocation time budget spent before %s", tile.id)
                    break

                yield StreamEvent(events.TILE, {"id": tile.id, "index": tile.index, "bounds": tile.bounds.to_dict()})

                record_lists = fetch_tile(
                    self.adapters,
                    tile,
                    request.business_types,
                    executor=source_pool,
                    cancel_event=cancel_event,
                )
                businesses = deduplicator.merge(record_lists)
                logger.info("%s: %d new businesses to resolve", tile.id, len(businesses))

                resolved: List[str] = []
                try:
                    for business, result in for_each(
                        businesses,
                        self.concurrency,
                        lambda record: self.resolver.resolve(record, cancel_event),
                        executor=resolver_pool,
                        cancel_event=cancel_event,
                    ):
                        resolved.append(business.identity)
                        if result.has_website is HasWebsite.NO:
                            found += 1
                            yield _business_event(tile, business, result)
                finally:
                    self._mark_seen(plan.query_key, resolved)

                if cancel_event.is_set():
                    # The interrupted tile stays the cursor so a resumed run repeats it.
                    logger.info("Stream cancelled during %s", tile.id)
                    break

                next_index = tile.index + 1
                yield StreamEvent(
                    events.PROGRESS,
                    {
                        "tilesSearched": next_index,
                        "totalTiles": total_tiles,
                        "businessesFound": found,
                        "uniqueBusinesses": len(deduplicator),
                        "elapsedMs": int((self._clock() - started) * 1000),
                    },
                )

            has_more = next_index < total_tiles
            yield StreamEvent(
                events.DONE,
                {
                    "totalFound": found,
                    "tilesSearched": next_index,
                    "totalTiles": total_tiles,
                    "uniqueBusinesses": len(deduplicator),
                    "hasMore": has_more,
                    "nextTileIndex": next_index if has_more else None,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Stream failed: %s", exc)
            yield events.error(str(exc) or exc.__class__.__name__)
        finally:
            source_pool.shutdown(wait=False)
            resolver_pool.shutdown(wait=False)

    def _budget_spent(self, started: float) -> bool:
        return self.time_budget_seconds > 0 and self._clock() - started >= self.time_budget_seconds

    def _load_seen(self, key: str) -> set:
        if self.dedup_scope is not DedupScope.QUERY or self.cache is None:
            return set()
        try:
            seen = self.cache.seen_identities(key)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not load seen businesses for query %s: %s", key, exc)
            return set()
        logger.info("Resuming query %s with %d businesses already seen", key, len(seen))
        return seen

    def _mark_seen(self, key: str, identities: List[str]) -> None:
        if self.dedup_scope is not DedupScope.QUERY or self.cache is None or not identities:
            return
        try:
            self.cache.mark_seen(key, identities)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not persist seen businesses for query %s: %s", key, exc)


def _business_event(tile: Tile, business: BusinessRecord, result: ResolutionResult) -> StreamEvent:
    coordinates = business.coordinates.to_dict() if business.coordinates else None
    return StreamEvent(
        events.BUSINESS,
        {
            "identity": business.identity,
            "name": business.name,
            "address": business.address,
            "coordinates": coordinates,
            "hasWebsite": False,
            "source": result.source.value,
            "provenance": business.provenance,
            "tileId": tile.id,
        },
    )
