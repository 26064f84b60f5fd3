"""Postgres-backed website-check cache."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional, Set

import psycopg2
from psycopg2 import extras, pool

from gapfinder.core.cache import BusinessCache, CacheError
from gapfinder.core.config import get_settings
from gapfinder.models import CacheEntry, HasWebsite

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None
_schema_ready = False


def init_pool(minconn: int = 1, maxconn: int = 8) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        # Resolver threads share the pool, so it has to be the thread-safe variant.
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS businesses (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT,
    place_id TEXT NOT NULL UNIQUE,
    has_website BOOLEAN,
    last_checked_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS query_seen_businesses (
    query_key TEXT NOT NULL,
    identity TEXT NOT NULL,
    seen_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (query_key, identity)
);
"""

_SELECT_BUSINESS = """
SELECT place_id, name, has_website, last_checked_at
FROM businesses
WHERE place_id = %(identity)s;
"""

_UPSERT_BUSINESS = """
INSERT INTO businesses (
    place_id,
    name,
    has_website,
    last_checked_at,
    updated_at
) VALUES (
    %(identity)s,
    %(name)s,
    %(has_website)s,
    %(last_checked_at)s,
    NOW()
)
ON CONFLICT (place_id) DO UPDATE SET
    name = COALESCE(EXCLUDED.name, businesses.name),
    has_website = EXCLUDED.has_website,
    last_checked_at = EXCLUDED.last_checked_at,
    updated_at = NOW();
"""

_SELECT_SEEN = """
SELECT identity FROM query_seen_businesses WHERE query_key = %(query_key)s;
"""

_INSERT_SEEN = """
INSERT INTO query_seen_businesses (query_key, identity) VALUES %s
ON CONFLICT (query_key, identity) DO NOTHING;
"""


def ensure_schema() -> None:
    """Create the cache tables once per process."""
    global _schema_ready
    if _schema_ready:
        return
    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
    except psycopg2.Error as exc:
        raise CacheError(f"failed to create cache schema: {exc}") from exc
    _schema_ready = True
    logger.info("Cache schema ensured")


class PostgresBusinessCache(BusinessCache):
    """Cache rows keyed by business identity (stored in the `place_id` column)."""

    def __init__(self, create_schema: bool = True) -> None:
        if create_schema:
            ensure_schema()

    def get(self, identity: str) -> Optional[CacheEntry]:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_SELECT_BUSINESS, {"identity": identity})
                    row = cur.fetchone()
        except psycopg2.Error as exc:
            raise CacheError(f"failed to read cache entry {identity}: {exc}") from exc
        if row is None:
            return None
        _, name, has_website, last_checked_at = row
        return CacheEntry(
            identity=identity,
            has_website=HasWebsite.from_optional(has_website),
            last_verified_at=last_checked_at,
            name=name,
        )

    def put(self, identity: str, has_website: HasWebsite, name: Optional[str], timestamp: datetime) -> None:
        params = {
            "identity": identity,
            "name": name,
            "has_website": has_website.to_optional(),
            "last_checked_at": timestamp,
        }
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_UPSERT_BUSINESS, params)
                conn.commit()
        except psycopg2.Error as exc:
            raise CacheError(f"failed to upsert cache entry {identity}: {exc}") from exc
        logger.debug("Upserted cache entry %s", identity)

    def seen_identities(self, query_key: str) -> Set[str]:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_SELECT_SEEN, {"query_key": query_key})
                    rows = cur.fetchall()
        except psycopg2.Error as exc:
            raise CacheError(f"failed to load seen identities for {query_key}: {exc}") from exc
        return {row[0] for row in rows}

    def mark_seen(self, query_key: str, identities: Iterable[str]) -> None:
        values = [(query_key, identity) for identity in identities]
        if not values:
            return
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    extras.execute_values(cur, _INSERT_SEEN, values)
                conn.commit()
        except psycopg2.Error as exc:
            raise CacheError(f"failed to persist seen identities for {query_key}: {exc}") from exc
