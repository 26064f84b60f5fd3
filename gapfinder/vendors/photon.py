"""Client utilities for the Photon geocoder (komoot)."""

import logging
from typing import Any, Dict, List

import requests

from gapfinder.models import BoundingBox

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://photon.komoot.io/api/"

MIN_REQUEST_INTERVAL_SECONDS = 0.5
DEFAULT_LIMIT = 50


class PhotonError(RuntimeError):
    """Raised when Photon returns an unusable response."""


def search(query: str, bounds: BoundingBox, *, limit: int = DEFAULT_LIMIT, timeout: float = 10) -> List[Dict[str, Any]]:
    """Return the GeoJSON features matching `query` inside `bounds`."""
    params = {
        "q": query,
        "bbox": f"{bounds.west},{bounds.south},{bounds.east},{bounds.north}",
        "limit": limit,
        "lang": "en",
    }
    response = _SESSION.get(_BASE_URL, params=params, timeout=timeout)
    response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise PhotonError("Photon returned a non-JSON body") from exc
    features = payload.get("features")
    if features is None:
        logger.debug("Photon payload without features for q=%s", query)
        return []
    if not isinstance(features, list):
        raise PhotonError("Photon features is not a list")
    return features
