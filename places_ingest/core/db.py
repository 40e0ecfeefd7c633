"""Database helpers for the worker.

The upserts rely on the unique keys declared in schema.sql. Run with
``PG_ENSURE_SCHEMA=true`` at least once against an existing database so the
matching unique indexes are created before the first ingest.
"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from psycopg2 import pool

from places_ingest.core.config import Settings
from places_ingest.etl.transform import serialize_opening_hours
from places_ingest.models import EnrichedPlace

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")
_WHITESPACE = re.compile(r"\s+")


def normalize_user_name(name: str) -> str:
    """Slug key for a review author: lowercase with all whitespace removed."""
    return _WHITESPACE.sub("", name or "").lower()


_UPSERT_PLACE = """
INSERT INTO place (
    name,
    address,
    lat,
    lon,
    opening_hours,
    phone
) VALUES (
    %(name)s,
    %(address)s,
    %(lat)s,
    %(lon)s,
    %(opening_hours)s,
    %(phone)s
)
ON CONFLICT (name, address) DO UPDATE SET
    lat = EXCLUDED.lat,
    lon = EXCLUDED.lon,
    opening_hours = EXCLUDED.opening_hours,
    phone = EXCLUDED.phone
RETURNING id;
"""

# The no-op update makes RETURNING yield the existing id on conflict.
_UPSERT_CATEGORY = """
INSERT INTO category (name) VALUES (%(name)s)
ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
RETURNING id;
"""

_LINK_CATEGORY = """
INSERT INTO place_category (place_id, category_id) VALUES (%(place_id)s, %(category_id)s)
ON CONFLICT DO NOTHING;
"""

_UPSERT_PHOTO = """
INSERT INTO place_photo (google_place_id, place_id, is_google_places_image)
VALUES (%(reference)s, %(place_id)s, TRUE)
ON CONFLICT (google_place_id, place_id) DO NOTHING;
"""

_UPSERT_USER = """
INSERT INTO "user" (user_name, name, password_hash, is_admin)
VALUES (%(user_name)s, %(name)s, '', FALSE)
ON CONFLICT (user_name) DO UPDATE SET user_name = EXCLUDED.user_name
RETURNING id;
"""

_UPSERT_REVIEW = """
INSERT INTO place_review (place_id, rating, text, time, user_id)
VALUES (%(place_id)s, %(rating)s, %(text)s, %(time)s, %(user_id)s)
ON CONFLICT (place_id, user_id, time) DO NOTHING;
"""


class PostgresStore:
    """Idempotent upserts for places and their dependent rows.

    Every operation checks a connection out of the pool and commits on its own,
    so concurrent writers never share a transaction.
    """

    def __init__(self, connection_pool: Any) -> None:
        self._pool = connection_pool

    @classmethod
    def from_settings(cls, settings: Settings, minconn: int = 1, maxconn: Optional[int] = None) -> "PostgresStore":
        if not settings.pg_database:
            raise RuntimeError("PG_DATABASE is required for database connections")
        connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn or max(minconn, settings.concurrency),
            **settings.connection_kwargs(),
        )
        logger.info("Database connection pool initialised for %s@%s", settings.pg_database, settings.pg_host)
        return cls(connection_pool)

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection, committed on success."""
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _execute(self, sql: str, params: Dict[str, Any]) -> Optional[tuple]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone() if cur.description else None

    def ensure_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        logger.info("Database schema ensured")

    def close(self) -> None:
        self._pool.closeall()
        logger.info("Database connection pool closed")

    def upsert_place(self, place: EnrichedPlace) -> int:
        if not place.name:
            raise ValueError("name is required for upsert")
        row = self._execute(
            _UPSERT_PLACE,
            {
                "name": place.name,
                "address": place.address or "",
                "lat": place.lat,
                "lon": place.lon,
                "opening_hours": serialize_opening_hours(place.opening_hours),
                "phone": place.phone or "",
            },
        )
        logger.debug("Upserted place %s -> %s", place.name, row[0])
        return row[0]

    def upsert_category(self, name: str) -> int:
        return self._execute(_UPSERT_CATEGORY, {"name": name})[0]

    def link_category(self, place_id: int, category_id: int) -> None:
        self._execute(_LINK_CATEGORY, {"place_id": place_id, "category_id": category_id})

    def upsert_photo(self, reference: str, place_id: int) -> None:
        self._execute(_UPSERT_PHOTO, {"reference": reference, "place_id": place_id})

    def upsert_user(self, name: str) -> int:
        user_name = normalize_user_name(name)
        if not user_name:
            raise ValueError("user name must contain non-whitespace characters")
        return self._execute(_UPSERT_USER, {"user_name": user_name, "name": name})[0]

    def upsert_review(
        self,
        place_id: int,
        rating: Optional[float],
        text: str,
        time: datetime,
        user_id: int,
    ) -> None:
        self._execute(
            _UPSERT_REVIEW,
            {"place_id": place_id, "rating": rating, "text": text, "time": time, "user_id": user_id},
        )
