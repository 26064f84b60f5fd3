"""Utilities for transforming raw provider payloads into BusinessRecord objects."""

import logging
from typing import Any, Dict, Iterable, Optional

from gapfinder.models import BusinessRecord, GeoPoint

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "Address not available"
_PHOTON_OSM_TYPES = {"N": "node", "W": "way", "R": "relation"}
_WEBSITE_TAGS = ("website", "contact:website", "url")


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _point(lat: Any, lon: Any) -> Optional[GeoPoint]:
    latitude = _safe_float(lat)
    longitude = _safe_float(lon)
    if latitude is None or longitude is None:
        return None
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return None
    return GeoPoint(latitude, longitude)


def _join(parts: Iterable[Any]) -> Optional[str]:
    joined = " ".join(str(part).strip() for part in parts if part and str(part).strip())
    return joined or None


def _first_website(tags: Dict[str, Any]) -> Optional[str]:
    for key in _WEBSITE_TAGS:
        website = _strip_or_none(tags.get(key))
        if website:
            return website
    return None


def format_osm_address(tags: Dict[str, Any]) -> Optional[str]:
    return _join(
        [
            tags.get("addr:housenumber"),
            tags.get("addr:street"),
            tags.get("addr:city"),
            tags.get("addr:state"),
            tags.get("addr:postcode"),
            tags.get("addr:country"),
        ]
    )


def from_nominatim(item: Dict[str, Any]) -> Optional[BusinessRecord]:
    osm_type = _strip_or_none(item.get("osm_type"))
    osm_id = item.get("osm_id")
    name = _strip_or_none(item.get("name"))
    if not osm_type or osm_id is None or not name:
        return None

    address = item.get("address") or {}
    street_address = _join(
        [
            address.get("house_number"),
            address.get("road"),
            address.get("city") or address.get("town") or address.get("village"),
            address.get("state"),
            address.get("postcode"),
            address.get("country"),
        ]
    )
    return BusinessRecord(
        identity=f"osm:{osm_type}:{osm_id}",
        name=name,
        address=street_address or _strip_or_none(item.get("display_name")) or UNKNOWN_ADDRESS,
        provenance="nominatim",
        coordinates=_point(item.get("lat"), item.get("lon")),
        declared_website=_first_website(item.get("extratags") or {}),
    )


def from_overpass(element: Dict[str, Any]) -> Optional[BusinessRecord]:
    """Flatten a node/way/relation; elements without usable coordinates are dropped."""
    element_type = element.get("type")
    element_id = element.get("id")
    if element_type not in {"node", "way", "relation"} or element_id is None:
        return None

    if element_type == "node":
        coordinates = _point(element.get("lat"), element.get("lon"))
    else:
        center = element.get("center") or {}
        coordinates = _point(center.get("lat"), center.get("lon"))
    if coordinates is None:
        return None

    tags = element.get("tags") or {}
    name = _strip_or_none(tags.get("name"))
    if not name:
        return None

    return BusinessRecord(
        identity=f"osm:{element_type}:{element_id}",
        name=name,
        address=format_osm_address(tags) or UNKNOWN_ADDRESS,
        provenance="overpass",
        coordinates=coordinates,
        declared_website=_first_website(tags),
    )


def from_photon(feature: Dict[str, Any]) -> Optional[BusinessRecord]:
    props = feature.get("properties") or {}
    osm_type = _PHOTON_OSM_TYPES.get(str(props.get("osm_type") or "").upper())
    osm_id = props.get("osm_id")
    name = _strip_or_none(props.get("name"))
    if not osm_type or osm_id is None or not name:
        return None

    coords = (feature.get("geometry") or {}).get("coordinates") or []
    coordinates = _point(coords[1], coords[0]) if len(coords) >= 2 else None
    address = _join(
        [
            props.get("housenumber"),
            props.get("street"),
            props.get("city"),
            props.get("state"),
            props.get("postcode"),
            props.get("country"),
        ]
    )
    return BusinessRecord(
        identity=f"osm:{osm_type}:{osm_id}",
        name=name,
        address=address or UNKNOWN_ADDRESS,
        provenance="photon",
        coordinates=coordinates,
        declared_website=_first_website(props.get("extra") or {}),
    )


def from_google_place(result: Dict[str, Any]) -> Optional[BusinessRecord]:
    place_id = _strip_or_none(result.get("place_id"))
    if not place_id:
        logger.debug("Skipping Google result without place_id: %s", result.get("name"))
        return None
    location = (result.get("geometry") or {}).get("location") or {}
    return BusinessRecord(
        identity=f"gplaces:{place_id}",
        name=_strip_or_none(result.get("name")) or "Unknown",
        address=_strip_or_none(result.get("vicinity") or result.get("formatted_address")) or UNKNOWN_ADDRESS,
        provenance="google_places",
        coordinates=_point(location.get("lat"), location.get("lng")),
        declared_website=_strip_or_none(result.get("website")),
        place_id=place_id,
    )
