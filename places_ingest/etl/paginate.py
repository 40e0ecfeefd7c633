"""Drain paginated nearby search results for one coordinate."""

import logging
import time
from typing import Any, Callable, Dict, List

from places_ingest.core.rate_limit import RateLimiter
from places_ingest.models import Coordinate
from places_ingest.vendors.google_places import PlacesClient

logger = logging.getLogger(__name__)


def drain_nearby(
    client: PlacesClient,
    coordinate: Coordinate,
    *,
    max_pages: int = 3,
    page_interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> List[Dict[str, Any]]:
    """Return every stub from up to ``max_pages`` pages, in page order.

    Continuation requests are spaced at least ``page_interval`` seconds after
    the page they continue. Duplicate places across pages are kept.
    """
    if max_pages < 1:
        raise ValueError("max_pages must be at least 1")

    limiter = RateLimiter(page_interval, clock=clock, sleep=sleep)
    stubs: List[Dict[str, Any]] = []
    page_token = None
    processed_pages = 0

    while processed_pages < max_pages:
        limiter.wait()
        response = client.nearby_search(coordinate.lat, coordinate.lon, pagetoken=page_token)
        limiter.touch()
        results = response.get("results") or []
        processed_pages += 1
        logger.info(
            "Fetched %d results on page %d for %s", len(results), processed_pages, coordinate.name
        )
        stubs.extend(results)

        page_token = response.get("next_page_token")
        if not page_token:
            break

    return stubs
