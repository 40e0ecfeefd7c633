"""Utilities for transforming Google Places responses into place records."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from places_ingest.models import EnrichedPlace, Review

logger = logging.getLogger(__name__)

ANONYMOUS_AUTHOR = "Anonymous"


def merge_place(stub: Dict[str, Any], detail: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay detail fields on a search stub; stub keys missing from the detail survive."""
    return {**(stub or {}), **(detail or {})}


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _photo_refs(photos: Optional[Iterable[Dict[str, Any]]]) -> List[str]:
    refs = []
    for photo in photos or []:
        ref = photo.get("photo_reference") if isinstance(photo, dict) else None
        if ref:
            refs.append(ref)
    return refs


def _reviews(raw_reviews: Optional[Iterable[Dict[str, Any]]]) -> List[Review]:
    reviews = []
    for raw in raw_reviews or []:
        if not isinstance(raw, dict):
            continue
        try:
            timestamp = int(raw.get("time"))
            review_time(timestamp)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.debug("Skipping review without a usable time: %s", raw)
            continue
        reviews.append(
            Review(
                author_name=(raw.get("author_name") or "").strip() or ANONYMOUS_AUTHOR,
                rating=_safe_float(raw.get("rating")),
                text=raw.get("text") or "",
                time=timestamp,
            )
        )
    return reviews


def to_enriched_place(result: Dict[str, Any]) -> EnrichedPlace:
    """Normalize a merged Places result; missing collections become empty lists."""
    name = (result.get("name") or "").strip()
    if not name:
        raise ValueError(f"place {result.get('place_id')!r} has no name")

    location = (result.get("geometry") or {}).get("location") or {}
    opening_hours = result.get("opening_hours")

    return EnrichedPlace(
        place_id=result.get("place_id"),
        name=name,
        address=result.get("formatted_address") or result.get("vicinity") or "",
        lat=_safe_float(location.get("lat")),
        lon=_safe_float(location.get("lng")),
        opening_hours=opening_hours if isinstance(opening_hours, dict) else None,
        phone=result.get("international_phone_number") or "",
        types=[t for t in result.get("types") or [] if t],
        photo_refs=_photo_refs(result.get("photos")),
        reviews=_reviews(result.get("reviews")),
        raw=result,
    )


def serialize_opening_hours(opening_hours: Optional[Dict[str, Any]]) -> str:
    if opening_hours is None:
        return "{}"
    return json.dumps(opening_hours, sort_keys=True, ensure_ascii=False)


def review_time(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
