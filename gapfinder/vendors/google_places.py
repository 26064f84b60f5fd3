"""Client utilities for the Google Places API."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

# Google refuses a next_page_token until it has propagated server side.
PAGE_TOKEN_DELAY_SECONDS = 2.0


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def _get(endpoint: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    response = _SESSION.get(f"{_BASE_URL}/{endpoint}/json", params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        logger.error("%s failed: status=%s, error_message=%s", endpoint, status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status)
    return payload


def text_search(query: str, api_key: str, pagetoken: Optional[str] = None, timeout: float = 10) -> Dict[str, Any]:
    params = {"query": query, "key": api_key}
    if pagetoken:
        params["pagetoken"] = pagetoken
    return _get("textsearch", params, timeout)


def nearby_search(
    *,
    latitude: float,
    longitude: float,
    radius_m: int,
    api_key: str,
    place_type: Optional[str] = None,
    keyword: Optional[str] = None,
    pagetoken: Optional[str] = None,
    timeout: float = 10,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {"key": api_key}
    if pagetoken:
        # A page token replaces every other search parameter.
        params["pagetoken"] = pagetoken
    else:
        params["location"] = f"{latitude},{longitude}"
        params["radius"] = str(radius_m)
        if place_type:
            params["type"] = place_type
        if keyword:
            params["keyword"] = keyword
    return _get("nearbysearch", params, timeout)


def place_details(place_id: str, api_key: str, fields: str = "website", timeout: float = 10) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": fields}
    payload = _get("details", params, timeout)
    return payload.get("result", {})


def find_place_id(query: str, api_key: str, timeout: float = 10) -> Optional[str]:
    """Return the place id of the best text match for `query`, if any."""
    payload = text_search(query, api_key, timeout=timeout)
    results = payload.get("results") or []
    if not results:
        return None
    return results[0].get("place_id") or None


def place_website(place_id: str, api_key: str, timeout: float = 10) -> Optional[str]:
    """Return the website field of a place.

    An empty string means Google knows the place and reports no website; None means
    the field was absent from the response.
    """
    result = place_details(place_id, api_key, fields="website", timeout=timeout)
    website = result.get("website")
    if isinstance(website, str):
        return website.strip()
    return None
