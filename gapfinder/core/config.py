"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    google_api_key: str = ""
    mino_api_key: str = ""
    gemini_api_key: str = ""
    database_url: str = ""
    worker_port: int = 9000
    radius_min_km: float = 10.0
    radius_max_km: float = 1000.0
    radius_default_km: float = 50.0
    tile_size_km: float = 10.0
    tile_overlap_km: float = 1.0
    max_tiles_per_invocation: int = 3
    invocation_time_budget_seconds: float = 0.0
    resolver_concurrency: int = 4
    verify_timeout_seconds: float = 8.0
    verify_max_retries: int = 2
    verify_backoff_ms: int = 400
    verification_backend: str = "mino"
    heartbeat_seconds: float = 10.0
    dedup_scope: str = "invocation"
    adapter_request_budget_seconds: float = 20.0
    nominatim_user_agent: str = "WebsiteGapFinder/1.0"
    browser_headless: bool = True

    def clamp_radius(self, radius_km: float) -> float:
        return min(max(radius_km, self.radius_min_km), self.radius_max_km)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not numeric; using %s", name, raw, default)
        return default


def _int_env(name: str, default: int) -> int:
    return int(_float_env(name, default))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    mino_api_key = os.getenv("MINO_API_KEY", "")
    gemini_api_key = os.getenv("GEMINI_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")

    radius_min_km = _float_env("RADIUS_MIN_KM", 10.0)
    radius_max_km = _float_env("RADIUS_MAX_KM", 1000.0)
    if radius_min_km > radius_max_km:
        logger.warning("RADIUS_MIN_KM exceeds RADIUS_MAX_KM; swapping the bounds.")
        radius_min_km, radius_max_km = radius_max_km, radius_min_km

    verification_backend = os.getenv("VERIFICATION_BACKEND", "mino").strip().lower() or "mino"
    if verification_backend not in {"mino", "browser"}:
        logger.warning("Unknown VERIFICATION_BACKEND=%s; falling back to mino.", verification_backend)
        verification_backend = "mino"

    dedup_scope = os.getenv("DEDUP_SCOPE", "invocation").strip().lower() or "invocation"
    if dedup_scope not in {"invocation", "query"}:
        logger.warning("Unknown DEDUP_SCOPE=%s; falling back to invocation.", dedup_scope)
        dedup_scope = "invocation"

    if not database_url:
        logger.warning("DATABASE_URL is not set; website checks will be cached in memory only.")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places search and lookups are disabled.")
    if verification_backend == "mino" and not mino_api_key:
        logger.warning("MINO_API_KEY is not configured; page verification is disabled.")
    if not gemini_api_key:
        logger.warning("GEMINI_API_KEY is not configured; prompts are parsed with the rule-based extractor.")

    return Settings(
        google_api_key=google_api_key,
        mino_api_key=mino_api_key,
        gemini_api_key=gemini_api_key,
        database_url=database_url,
        worker_port=_int_env("WORKER_PORT", 9000),
        radius_min_km=radius_min_km,
        radius_max_km=radius_max_km,
        radius_default_km=_float_env("RADIUS_DEFAULT_KM", 50.0),
        tile_size_km=_float_env("TILE_SIZE_KM", 10.0),
        tile_overlap_km=_float_env("TILE_OVERLAP_KM", 1.0),
        max_tiles_per_invocation=max(1, _int_env("MAX_TILES_PER_INVOCATION", 3)),
        invocation_time_budget_seconds=_float_env("INVOCATION_TIME_BUDGET_SECONDS", 0.0),
        resolver_concurrency=max(1, _int_env("RESOLVER_CONCURRENCY", 4)),
        verify_timeout_seconds=_float_env("VERIFY_TIMEOUT_SECONDS", 8.0),
        verify_max_retries=max(0, _int_env("VERIFY_MAX_RETRIES", 2)),
        verify_backoff_ms=max(0, _int_env("VERIFY_BACKOFF_MS", 400)),
        verification_backend=verification_backend,
        heartbeat_seconds=_float_env("HEARTBEAT_SECONDS", 10.0),
        dedup_scope=dedup_scope,
        adapter_request_budget_seconds=_float_env("ADAPTER_REQUEST_BUDGET_SECONDS", 20.0),
        nominatim_user_agent=os.getenv("NOMINATIM_USER_AGENT", "WebsiteGapFinder/1.0"),
        browser_headless=os.getenv("BROWSER_HEADLESS", "true").lower() in _TRUTHY,
    )
