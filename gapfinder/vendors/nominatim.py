"""Client utilities for the OpenStreetMap Nominatim search API."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://nominatim.openstreetmap.org"

# Nominatim's usage policy allows at most one request per second.
MIN_REQUEST_INTERVAL_SECONDS = 1.0
PAGE_SIZE = 40


class NominatimError(RuntimeError):
    """Raised when Nominatim returns an unusable response."""


def search(
    query: str,
    *,
    user_agent: str,
    viewbox: Optional[Iterable[float]] = None,
    bounded: bool = False,
    limit: int = PAGE_SIZE,
    exclude_place_ids: Optional[Iterable[int]] = None,
    timeout: float = 10,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "q": query,
        "format": "jsonv2",
        "limit": limit,
        "addressdetails": 1,
        "extratags": 1,
    }
    if viewbox is not None:
        params["viewbox"] = ",".join(str(value) for value in viewbox)
        if bounded:
            params["bounded"] = 1
    excluded = [str(place_id) for place_id in exclude_place_ids or []]
    if excluded:
        params["exclude_place_ids"] = ",".join(excluded)

    response = _SESSION.get(
        f"{_BASE_URL}/search",
        params=params,
        headers={"User-Agent": user_agent},
        timeout=timeout,
    )
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, list):
        logger.error("Nominatim search returned %s instead of a list", type(payload).__name__)
        raise NominatimError("unexpected Nominatim payload")
    return payload


def geocode(location: str, *, user_agent: str, timeout: float = 10) -> Optional[Dict[str, float]]:
    """Resolve free text to {"lat", "lng"} using the first Nominatim hit."""
    results = search(location, user_agent=user_agent, limit=1, timeout=timeout)
    if not results:
        return None
    first = results[0]
    try:
        return {"lat": float(first["lat"]), "lng": float(first["lon"])}
    except (KeyError, TypeError, ValueError) as exc:
        raise NominatimError(f"geocode result without coordinates: {exc}") from exc
