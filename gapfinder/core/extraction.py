"""Turn a free-text prompt into business types, a location and a search center."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from gapfinder.core.config import Settings
from gapfinder.core.stream import InvalidRequestError, StreamRequest
from gapfinder.models import GeoPoint, StreamCursor
from gapfinder.vendors import gemini, nominatim

logger = logging.getLogger(__name__)

EXTRACTION_TEMPLATE = """
Analyze the following user prompt and extract business types and location information.

User prompt: "{prompt}"

Return only a JSON object with this exact structure:
{{
  "businessTypes": ["type1", "type2"],
  "location": "location string or null if not found"
}}
If no business types are found, return an empty array. If no location is found, return null.
"""

_LOCATION_SPLIT = re.compile(r"\b(?:in|near|around|at)\b\s+(?:the\s+)?", re.IGNORECASE)
_LEADING_VERBS = re.compile(
    r"^(?:please\s+)?(?:find|show|list|search(?:\s+for)?|look\s+for|get|give\s+me)\s+(?:me\s+)?(?:all\s+)?(?:the\s+)?",
    re.IGNORECASE,
)
_TRAILING_NOISE = re.compile(r"\b(?:without|with no|that (?:don't|do not) have|lacking)\b.*$", re.IGNORECASE)
_TYPE_SEPARATORS = re.compile(r"\s*(?:,|/|&|\band\b|\bor\b)\s*", re.IGNORECASE)
_RADIUS_SUFFIX = re.compile(r"\s*(?:within\s+)?\d+(?:\.\d+)?\s*(?:km|kilometers?|kilometres?|mi|miles?)\b.*$", re.IGNORECASE)


@dataclass(frozen=True)
class PromptExtraction:
    business_types: List[str] = field(default_factory=list)
    location: Optional[str] = None
    method: str = "rules"


def extract_with_rules(prompt: str) -> PromptExtraction:
    text = re.sub(r"\s+", " ", (prompt or "").strip().rstrip("?.!"))
    if not text:
        return PromptExtraction()

    parts = _LOCATION_SPLIT.split(text, maxsplit=1)
    subject = parts[0]
    location = _RADIUS_SUFFIX.sub("", parts[1]).strip(" ,") if len(parts) > 1 else None

    subject = _LEADING_VERBS.sub("", subject)
    subject = _TRAILING_NOISE.sub("", subject)
    types = []
    for chunk in _TYPE_SEPARATORS.split(subject):
        chunk = chunk.strip(" ,").lower()
        if chunk and chunk not in types:
            types.append(chunk)
    return PromptExtraction(types, location or None, "rules")


def _parse_model_output(text: str) -> PromptExtraction:
    cleaned = re.sub(r"```(?:json)?\n?", "", text or "").strip()
    data: Any = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("model output is not an object")
    types = data.get("businessTypes")
    location = data.get("location")
    if not isinstance(types, list) or (location is not None and not isinstance(location, str)):
        raise ValueError(f"invalid structure from model: {data}")
    business_types = [str(t).strip() for t in types if str(t).strip()]
    return PromptExtraction(business_types, (location or "").strip() or None, "gemini")


def extract(prompt: str, *, gemini_api_key: str = "") -> PromptExtraction:
    """Best-effort extraction: Gemini when configured, rules otherwise or on any failure."""
    if gemini_api_key:
        try:
            text = gemini.generate_text(EXTRACTION_TEMPLATE.format(prompt=prompt), gemini_api_key)
            extraction = _parse_model_output(text)
            if extraction.business_types:
                return extraction
            logger.info("Gemini found no business types; trying the rule-based extractor")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Gemini extraction failed, using rules: %s", exc)
    return extract_with_rules(prompt)


def _parse_radius(raw: Any, settings: Settings) -> float:
    if raw is None or raw == "":
        radius = settings.radius_default_km
    else:
        if isinstance(raw, bool):
            raise InvalidRequestError("radiusKm must be numeric")
        try:
            radius = float(raw)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError("radiusKm must be numeric") from exc
        if not math.isfinite(radius):
            raise InvalidRequestError("radiusKm must be a finite number")
    return settings.clamp_radius(radius)


def geocode_location(location: str, settings: Settings) -> GeoPoint:
    try:
        hit = nominatim.geocode(location, user_agent=settings.nominatim_user_agent)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Geocoding %r failed: %s", location, exc)
        raise InvalidRequestError(f"could not geocode location: {location}") from exc
    if hit is None:
        raise InvalidRequestError(f"could not geocode location: {location}")
    return GeoPoint(hit["lat"], hit["lng"])


def resolve_request(
    prompt: Any,
    settings: Settings,
    *,
    radius_km: Any = None,
    cursor: Any = None,
    center: Optional[GeoPoint] = None,
) -> StreamRequest:
    """Validate an inbound request and resolve it into a StreamRequest.

    Raises InvalidRequestError before any tiling happens.
    """
    if not prompt or not isinstance(prompt, str):
        raise InvalidRequestError("Prompt is required and must be a string")
    radius = _parse_radius(radius_km, settings)
    try:
        stream_cursor = StreamCursor.parse(cursor)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidRequestError("resumeCursor must be an integer tile index") from exc

    extraction = extract(prompt, gemini_api_key=settings.gemini_api_key)
    logger.info("Extracted types=%s location=%s via %s", extraction.business_types, extraction.location, extraction.method)
    if not extraction.location:
        raise InvalidRequestError("could not find a location in the prompt")
    if not extraction.business_types:
        raise InvalidRequestError("could not find a business type in the prompt")

    if center is None:
        center = geocode_location(extraction.location, settings)
    return StreamRequest(extraction.business_types, extraction.location, center, radius, stream_cursor)
