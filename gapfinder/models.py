"""Core data models shared by the discovery and verification pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class HasWebsite(str, Enum):
    """Tri-state website presence. UNKNOWN means "not (yet) established"."""

    UNKNOWN = "unknown"
    YES = "true"
    NO = "false"

    @classmethod
    def from_optional(cls, value: Optional[bool]) -> "HasWebsite":
        if value is None:
            return cls.UNKNOWN
        return cls.YES if value else cls.NO

    def to_optional(self) -> Optional[bool]:
        if self is HasWebsite.UNKNOWN:
            return None
        return self is HasWebsite.YES

    @property
    def is_known(self) -> bool:
        return self is not HasWebsite.UNKNOWN


class ResolutionSource(str, Enum):
    CACHE = "cache"
    DECLARED = "declared"
    VERIFIED = "verified"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass(frozen=True)
class BoundingBox:
    west: float
    east: float
    north: float
    south: float

    def contains(self, point: GeoPoint) -> bool:
        return self.south <= point.latitude <= self.north and self.west <= point.longitude <= self.east

    @property
    def center(self) -> GeoPoint:
        return GeoPoint((self.north + self.south) / 2, (self.west + self.east) / 2)

    def to_dict(self) -> Dict[str, float]:
        return {"west": self.west, "east": self.east, "north": self.north, "south": self.south}


@dataclass(frozen=True)
class Tile:
    """A square sub-region of the search disk; `index` is its position in emission order."""

    id: str
    index: int
    bounds: BoundingBox


@dataclass(frozen=True)
class BusinessRecord:
    """Normalized snapshot of a business returned by one upstream provider."""

    identity: str
    name: str
    address: str
    provenance: str
    coordinates: Optional[GeoPoint] = None
    declared_website: Optional[str] = None
    place_id: Optional[str] = None


@dataclass(frozen=True)
class CacheEntry:
    identity: str
    has_website: HasWebsite = HasWebsite.UNKNOWN
    last_verified_at: Optional[datetime] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ResolutionResult:
    identity: str
    has_website: HasWebsite
    source: ResolutionSource


@dataclass(frozen=True)
class StreamCursor:
    next_tile_index: int = 0

    @classmethod
    def parse(cls, raw: Any) -> "StreamCursor":
        """Accept the integer form emitted in `done` events. Raises ValueError otherwise."""
        if raw is None or raw == "":
            return cls(0)
        if isinstance(raw, bool):
            raise ValueError("cursor must be an integer tile index")
        return cls(max(0, int(raw)))
