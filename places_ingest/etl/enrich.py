"""Detail enrichment for nearby search stubs."""

import logging
from typing import Any, Dict

from places_ingest.etl.transform import merge_place, to_enriched_place
from places_ingest.models import EnrichedPlace
from places_ingest.vendors.google_places import PlacesClient

logger = logging.getLogger(__name__)


def enrich(client: PlacesClient, stub: Dict[str, Any]) -> EnrichedPlace:
    """Fetch place details for ``stub`` and merge them into an ``EnrichedPlace``.

    Stubs without a ``place_id`` cannot be looked up and are normalized as-is.
    Upstream failures propagate as ``GooglePlacesError``.
    """
    place_id = stub.get("place_id")
    if not place_id:
        logger.debug("Stub without place_id, skipping detail lookup: %s", stub.get("name"))
        return to_enriched_place(stub)

    details = client.place_details(place_id)
    return to_enriched_place(merge_place(stub, details))
