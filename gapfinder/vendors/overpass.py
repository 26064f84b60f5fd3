"""Client utilities for the OpenStreetMap Overpass API."""

import logging
from typing import Any, Dict, List

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

OVERPASS_ENDPOINT = "https://overpass-api.de/api/interpreter"
MIN_REQUEST_INTERVAL_SECONDS = 1.0


class OverpassError(RuntimeError):
    """Raised when Overpass answers with an error or a non-JSON body."""


def run_query(query: str, *, endpoint: str = OVERPASS_ENDPOINT, timeout: float = 25) -> List[Dict[str, Any]]:
    """POST an Overpass QL query and return its `elements` list."""
    response = _SESSION.post(endpoint, data={"data": query}, timeout=timeout)
    if response.status_code in (429, 504):
        raise OverpassError(f"Overpass is overloaded (status={response.status_code})")
    response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise OverpassError("Overpass returned a non-JSON body") from exc
    remark = payload.get("remark")
    if remark and "error" in remark.lower():
        logger.warning("Overpass remark: %s", remark)
    return payload.get("elements") or []
