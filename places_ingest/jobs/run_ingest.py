"""Batch job: search places around each coordinate, enrich them and persist them."""

import json
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import psycopg2

from places_ingest.core.config import ConfigError, Settings, get_settings
from places_ingest.core.db import PostgresStore
from places_ingest.etl.enrich import enrich
from places_ingest.etl.paginate import drain_nearby
from places_ingest.etl.writer import write_place
from places_ingest.models import Coordinate, CoordinateOutcome, OutcomeStatus, PlaceOutcome, RunReport
from places_ingest.vendors.google_places import GooglePlacesError, PlacesClient

logger = logging.getLogger(__name__)


class PipelineAborted(RuntimeError):
    """Raised when a failure stops the run; ``report`` holds the outcomes gathered so far."""

    def __init__(self, message: str, report: RunReport) -> None:
        super().__init__(message)
        self.report = report


def load_coordinates(path: str) -> List[Coordinate]:
    """Read a JSON array of ``{name, lat, lon}`` objects."""
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as fh:
            entries = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Coordinates file not found: {file_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Coordinates file is not valid JSON: {file_path}: {exc}") from exc

    if not isinstance(entries, list):
        raise ConfigError("Coordinates file must contain a JSON array")

    coordinates = []
    for index, entry in enumerate(entries):
        try:
            coordinates.append(Coordinate(name=str(entry["name"]), lat=float(entry["lat"]), lon=float(entry["lon"])))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid coordinate at index {index}: {entry!r}") from exc
    return coordinates


def _upstream_status(exc: GooglePlacesError) -> OutcomeStatus:
    return OutcomeStatus.RETRYABLE if exc.retryable else OutcomeStatus.SKIPPED


def search_coordinate(
    client: PlacesClient,
    coordinate: Coordinate,
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[CoordinateOutcome, List[Dict[str, Any]]]:
    outcome = CoordinateOutcome(coordinate)
    logger.info("[%s] Searching", coordinate.name)
    try:
        stubs = drain_nearby(
            client,
            coordinate,
            max_pages=settings.max_pages,
            page_interval=settings.page_delay_seconds,
            sleep=sleep,
        )
    except GooglePlacesError as exc:
        outcome.status = _upstream_status(exc)
        outcome.error = str(exc)
        logger.warning("[%s] Failed: %s", coordinate.name, exc)
        return outcome, []

    outcome.places_found = len(stubs)
    logger.info("[%s] Paginated %d places", coordinate.name, len(stubs))
    return outcome, stubs


def process_place(client: PlacesClient, store, stub: Dict[str, Any]) -> PlaceOutcome:
    """Enrich and write one stub, folding failures into a typed outcome."""
    outcome = PlaceOutcome(stub.get("place_id"), stub.get("name"))
    logger.info("Enriching '%s'", outcome.name)

    try:
        place = enrich(client, stub)
    except GooglePlacesError as exc:
        outcome.status = _upstream_status(exc)
        outcome.error = f"detail fetch failed: {exc}"
        return outcome
    except ValueError as exc:
        outcome.status = OutcomeStatus.SKIPPED
        outcome.error = f"malformed record: {exc}"
        return outcome

    logger.debug("Writing '%s'", place.name)
    try:
        return write_place(store, place)
    except (psycopg2.Error, ValueError) as exc:
        outcome.status = OutcomeStatus.FATAL
        outcome.error = f"write failed: {exc}"
        return outcome


def run_ingest(
    settings: Settings,
    client: PlacesClient,
    store,
    coordinates: List[Coordinate],
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """Run the whole pipeline and return the aggregated outcomes.

    Nearby searches run ``settings.search_concurrency`` at a time and every
    discovered stub is enriched and written by a pool of
    ``settings.concurrency`` workers. Place-local upstream failures are skipped
    unless ``place_failure_policy`` is ``abort``; store failures always abort
    with ``PipelineAborted``.
    """
    report = RunReport()
    abort_on_skip = settings.place_failure_policy == "abort"
    search_pool = ThreadPoolExecutor(max_workers=settings.search_concurrency, thread_name_prefix="search")
    place_pool = ThreadPoolExecutor(max_workers=settings.concurrency, thread_name_prefix="place")

    pending: Dict[Future, int] = {}
    remaining: Dict[int, int] = {}

    try:
        for index, coordinate in enumerate(coordinates):
            logger.info("[%s] Pending", coordinate.name)
            pending[search_pool.submit(search_coordinate, client, coordinate, settings, sleep)] = index

        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                index = pending.pop(future)
                result = future.result()

                if isinstance(result, PlaceOutcome):
                    report.places.append(result)
                    if result.status is OutcomeStatus.SUCCESS:
                        logger.info("Wrote %s as id %s", result.label, result.db_id)
                    elif result.status is OutcomeStatus.FATAL or abort_on_skip:
                        raise PipelineAborted(f"{result.label}: {result.error}", report)
                    else:
                        logger.warning("Skipping %s: %s", result.label, result.error)
                    remaining[index] -= 1
                    if remaining[index] == 0:
                        logger.info("[%s] Done", coordinates[index].name)
                    continue

                coordinate_outcome, stubs = result
                report.coordinates.append(coordinate_outcome)
                if coordinate_outcome.status is not OutcomeStatus.SUCCESS:
                    if abort_on_skip:
                        raise PipelineAborted(f"{coordinate_outcome.label}: {coordinate_outcome.error}", report)
                    continue

                remaining[index] = len(stubs)
                if not stubs:
                    logger.info("[%s] Done", coordinates[index].name)
                for stub in stubs:
                    pending[place_pool.submit(process_place, client, store, stub)] = index
    finally:
        # Queued work is dropped on abort; running tasks finish and keep their commits.
        search_pool.shutdown(wait=True, cancel_futures=True)
        place_pool.shutdown(wait=True, cancel_futures=True)

    return report


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    try:
        settings = get_settings()
        logging.getLogger().setLevel(settings.log_level)
        settings.validate()
        coordinates = load_coordinates(settings.coordinates_file)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    logger.info("%d coordinates to process", len(coordinates))
    client = PlacesClient.from_settings(settings)

    try:
        store = PostgresStore.from_settings(settings)
    except psycopg2.Error as exc:
        logger.error("Could not connect to the database: %s", exc)
        client.session.close()
        return 1

    try:
        if settings.ensure_schema:
            store.ensure_schema()
        report = run_ingest(settings, client, store, coordinates)
    except PipelineAborted as exc:
        logger.error("Run aborted: %s", exc)
        logger.info("Partial run summary: %s", exc.report.summary())
        return 1
    except Exception as exc:  # noqa: BLE001
        logger.exception("Ingestion run failed: %s", exc)
        return 1
    finally:
        store.close()
        client.session.close()

    for failure in report.failures:
        logger.warning("Not ingested: %s", failure)
    logger.info("Completed run: %s", report.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
