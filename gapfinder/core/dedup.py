"""Identity-keyed, first-seen-wins merging of adapter outputs."""

from __future__ import annotations

import hashlib
import json
import logging
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from gapfinder.models import BusinessRecord, GeoPoint

logger = logging.getLogger(__name__)


class DedupScope(str, Enum):
    # Seen-set lives for one invocation; resumed runs may re-emit (at-least-once).
    INVOCATION = "invocation"
    # Seen-set is persisted per query through the cache collaborator.
    QUERY = "query"


class Deduplicator:
    def __init__(self, seen: Optional[Iterable[str]] = None) -> None:
        self.seen: Set[str] = set(seen or ())

    def merge(self, record_lists: Iterable[Sequence[BusinessRecord]]) -> List[BusinessRecord]:
        """Return records whose identity has not been seen, in first-seen order."""
        merged: List[BusinessRecord] = []
        dropped = 0
        for records in record_lists:
            for record in records:
                if record.identity in self.seen:
                    dropped += 1
                    continue
                self.seen.add(record.identity)
                merged.append(record)
        if dropped:
            logger.debug("Dropped %d duplicate businesses", dropped)
        return merged

    def __len__(self) -> int:
        return len(self.seen)


def query_key(business_types: Sequence[str], location: str, radius_km: float, center: GeoPoint) -> str:
    """Stable identity of a logical query, used to scope the persisted seen-set."""
    material = json.dumps(
        {
            "types": sorted(t.strip().lower() for t in business_types),
            "location": (location or "").strip().lower(),
            "radius_km": round(float(radius_km), 3),
            "center": [round(center.latitude, 5), round(center.longitude, 5)],
        },
        sort_keys=True,
    )
    return hashlib.sha1(material.encode("utf-8")).hexdigest()
