"""Persist an enriched place and its dependent rows through a store."""

import logging

from places_ingest.etl.transform import review_time
from places_ingest.models import EnrichedPlace, OutcomeStatus, PlaceOutcome

logger = logging.getLogger(__name__)


def write_place(store, place: EnrichedPlace) -> PlaceOutcome:
    """Upsert ``place`` then its categories, photos and reviews.

    ``store`` exposes the six upsert operations of ``PostgresStore``. Store
    errors propagate; rows written before the failure stay committed.
    """
    place_db_id = store.upsert_place(place)
    outcome = PlaceOutcome(place.place_id, place.name, OutcomeStatus.SUCCESS, db_id=place_db_id)

    for category in dict.fromkeys(place.types):
        category_id = store.upsert_category(category)
        store.link_category(place_db_id, category_id)
        outcome.categories += 1

    for reference in place.photo_refs:
        store.upsert_photo(reference, place_db_id)
        outcome.photos += 1

    for review in place.reviews:
        user_id = store.upsert_user(review.author_name)
        store.upsert_review(place_db_id, review.rating, review.text, review_time(review.time), user_id)
        outcome.reviews += 1

    logger.debug(
        "Wrote %s: categories=%d photos=%d reviews=%d",
        outcome.label,
        outcome.categories,
        outcome.photos,
        outcome.reviews,
    )
    return outcome
