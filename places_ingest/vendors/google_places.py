"""Client utilities for the Google Places API."""

import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from places_ingest.core.config import Settings

logger = logging.getLogger(__name__)
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

DETAIL_FIELDS = (
    "place_id,name,formatted_address,geometry,opening_hours,"
    "international_phone_number,types,photos,reviews"
)
RETRYABLE_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""

    def __init__(self, message: str, *, status: Optional[str] = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


def build_session(total_retries: int = 3) -> requests.Session:
    """Session that retries connection errors and 429/5xx responses at the transport level."""
    session = requests.Session()
    retries = Retry(
        total=total_retries,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class PlacesClient:
    """Nearby search and place detail calls with status-aware retries."""

    def __init__(
        self,
        api_key: str,
        *,
        session: Optional[requests.Session] = None,
        retry_limit: int = 2,
        retry_delay: float = 1.2,
        rank_by: str = "distance",
        radius: int = 1500,
        search_type: Optional[str] = None,
        keyword: Optional[str] = None,
        timeout: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.session = session or build_session()
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay
        self.rank_by = rank_by
        self.radius = radius
        self.search_type = search_type
        self.keyword = keyword
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "PlacesClient":
        return cls(
            settings.google_api_key,
            retry_limit=settings.retry_limit,
            retry_delay=settings.retry_delay_seconds,
            rank_by=settings.rank_by,
            radius=settings.search_radius,
            search_type=settings.search_type,
            keyword=settings.search_keyword,
            **kwargs,
        )

    def nearby_search(self, lat: float, lon: float, pagetoken: Optional[str] = None) -> Dict[str, Any]:
        """Return the raw nearby search payload; ``results`` is always present."""
        if pagetoken:
            # The token encodes the original query; other parameters are ignored.
            params: Dict[str, Any] = {"pagetoken": pagetoken, "key": self.api_key}
        else:
            params = {"location": f"{lat},{lon}", "key": self.api_key}
            if self.rank_by == "distance":
                params["rankby"] = "distance"
            else:
                params["radius"] = self.radius
            if self.search_type:
                params["type"] = self.search_type
            if self.keyword:
                params["keyword"] = self.keyword
        payload = self._request("nearbysearch", params, continuation=bool(pagetoken))
        payload.setdefault("results", [])
        return payload

    def place_details(self, place_id: str) -> Dict[str, Any]:
        params = {"place_id": place_id, "key": self.api_key, "fields": DETAIL_FIELDS}
        payload = self._request("details", params)
        return payload.get("result") or {}

    def _request(self, endpoint: str, params: Dict[str, Any], *, continuation: bool = False) -> Dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._get_json(endpoint, params, continuation=continuation)
            except GooglePlacesError as exc:
                if not exc.retryable or attempt > self.retry_limit:
                    if exc.retryable:
                        logger.error("%s exhausted retries: %s", endpoint, exc)
                    raise
                logger.warning("%s failed (attempt %s/%s): %s", endpoint, attempt, self.retry_limit + 1, exc)
            sleep_for = self.retry_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.5)
            self._sleep(sleep_for)

    def _get_json(self, endpoint: str, params: Dict[str, Any], *, continuation: bool) -> Dict[str, Any]:
        try:
            response = self.session.get(f"{_BASE_URL}/{endpoint}/json", params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            retryable = status_code is None or status_code == 429 or status_code >= 500
            raise GooglePlacesError(f"HTTP {status_code}", status=str(status_code), retryable=retryable) from exc
        except requests.RequestException as exc:
            # Includes RetryError once the session's 429/5xx transport retries are used up.
            raise GooglePlacesError(str(exc), status="NETWORK", retryable=True) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise GooglePlacesError("Response body is not JSON", status="BAD_JSON", retryable=True) from exc

        status = payload.get("status")
        if status in {"OK", "ZERO_RESULTS"}:
            return payload

        # A continuation token is rejected with INVALID_REQUEST until it becomes valid upstream.
        retryable = status in RETRYABLE_STATUSES or (continuation and status == "INVALID_REQUEST")
        logger.log(
            logging.WARNING if retryable else logging.ERROR,
            "%s failed: status=%s, error_message=%s",
            endpoint,
            status,
            payload.get("error_message"),
        )
        raise GooglePlacesError(payload.get("error_message") or str(status), status=status, retryable=retryable)
