import itertools
import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

# Ensure `places_ingest` package is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from places_ingest.core.db import normalize_user_name  # noqa: E402
from places_ingest.etl.transform import serialize_opening_hours  # noqa: E402


class InMemoryStore:
    """Store double enforcing the same uniqueness keys as schema.sql."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = {table: itertools.count(1) for table in ("place", "category", "user", "photo", "review")}
        self.places = {}
        self.categories = {}
        self.place_categories = set()
        self.photos = set()
        self.users = {}
        self.reviews = {}
        self.closed = False
        self.schema_ensured = False

    def upsert_place(self, place):
        with self._lock:
            key = (place.name, place.address or "")
            row = self.places.get(key)
            if row is None:
                row = {"id": next(self._ids["place"]), "name": place.name, "address": key[1]}
                self.places[key] = row
            row.update(
                lat=place.lat,
                lon=place.lon,
                opening_hours=serialize_opening_hours(place.opening_hours),
                phone=place.phone or "",
            )
            return row["id"]

    def upsert_category(self, name):
        with self._lock:
            if name not in self.categories:
                self.categories[name] = next(self._ids["category"])
            return self.categories[name]

    def link_category(self, place_id, category_id):
        with self._lock:
            self.place_categories.add((place_id, category_id))

    def upsert_photo(self, reference, place_id):
        with self._lock:
            self.photos.add((reference, place_id))

    def upsert_user(self, name):
        user_name = normalize_user_name(name)
        if not user_name:
            raise ValueError("user name must contain non-whitespace characters")
        with self._lock:
            if user_name not in self.users:
                self.users[user_name] = next(self._ids["user"])
            return self.users[user_name]

    def upsert_review(self, place_id, rating, text, time, user_id):
        with self._lock:
            self.reviews.setdefault((place_id, user_id, time), {"rating": rating, "text": text})

    def ensure_schema(self):
        self.schema_ensured = True

    def close(self):
        self.closed = True

    def row_counts(self):
        return {
            "place": len(self.places),
            "category": len(self.categories),
            "place_category": len(self.place_categories),
            "place_photo": len(self.photos),
            "user": len(self.users),
            "place_review": len(self.reviews),
        }


@pytest.fixture
def store():
    return InMemoryStore()


class _PlacesHandler(BaseHTTPRequestHandler):
    routes = {}

    def do_GET(self):
        endpoint = self.path.split("?", 1)[0].rstrip("/").rsplit("/", 2)[-2]
        status, payload = self.routes.get(endpoint, (404, {}))
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def places_server(monkeypatch):
    """Local Places API stand-in; set ``routes[endpoint] = (status, payload)``."""
    from places_ingest.vendors import google_places

    handler = type("Handler", (_PlacesHandler,), {"routes": {}})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    monkeypatch.setattr(google_places, "_BASE_URL", f"http://127.0.0.1:{server.server_port}/maps/api/place")
    yield handler.routes
    server.shutdown()
    server.server_close()
