import pytest

from places_ingest.etl import paginate
from places_ingest.models import Coordinate
from places_ingest.vendors.google_places import GooglePlacesError

COORD = Coordinate(name="A", lat=1.0, lon=2.0)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class DummyClient:
    """Serves pre-built pages: page ``i`` links to page ``i + 1`` through ``tok-<i+1>``."""

    def __init__(self, pages, clock=None):
        self.pages = pages
        self.clock = clock
        self.calls = []

    def nearby_search(self, lat, lon, pagetoken=None):
        self.calls.append((lat, lon, pagetoken, self.clock() if self.clock else None))
        index = int(pagetoken.split("-")[1]) if pagetoken else 0
        page = {"status": "OK", "results": self.pages[index]}
        if index + 1 < len(self.pages):
            page["next_page_token"] = f"tok-{index + 1}"
        return page


def _stubs(*ids):
    return [{"place_id": place_id, "name": place_id.upper()} for place_id in ids]


def test_drain_concatenates_pages_in_order():
    client = DummyClient([_stubs("a", "b"), _stubs("c"), _stubs("d", "e")])

    stubs = paginate.drain_nearby(client, COORD, max_pages=3, page_interval=0)

    assert [s["place_id"] for s in stubs] == ["a", "b", "c", "d", "e"]
    assert [call[2] for call in client.calls] == [None, "tok-1", "tok-2"]
    assert client.calls[0][:2] == (1.0, 2.0)


def test_drain_stops_at_max_pages():
    client = DummyClient([_stubs(f"p{i}") for i in range(6)])

    stubs = paginate.drain_nearby(client, COORD, max_pages=3, page_interval=0)

    assert len(client.calls) == 3
    assert [s["place_id"] for s in stubs] == ["p0", "p1", "p2"]


def test_drain_stops_when_no_token():
    client = DummyClient([_stubs("a"), _stubs("b")])

    stubs = paginate.drain_nearby(client, COORD, max_pages=10, page_interval=0)

    assert len(client.calls) == 2
    assert [s["place_id"] for s in stubs] == ["a", "b"]


def test_zero_results_yield_empty_list():
    client = DummyClient([[]])

    assert paginate.drain_nearby(client, COORD, max_pages=3, page_interval=0) == []
    assert len(client.calls) == 1


def test_duplicates_across_pages_are_kept():
    client = DummyClient([_stubs("a", "b"), _stubs("b", "c")])

    stubs = paginate.drain_nearby(client, COORD, max_pages=3, page_interval=0)

    assert [s["place_id"] for s in stubs] == ["a", "b", "b", "c"]


def test_continuation_requests_wait_for_page_interval():
    clock = FakeClock()
    client = DummyClient([_stubs("a"), _stubs("b"), _stubs("c")], clock=clock)

    paginate.drain_nearby(client, COORD, max_pages=3, page_interval=2.0, sleep=clock.sleep, clock=clock)

    request_times = [call[3] for call in client.calls]
    assert request_times == [0.0, 2.0, 4.0]


def test_upstream_failure_propagates():
    class FailingClient:
        def nearby_search(self, lat, lon, pagetoken=None):
            raise GooglePlacesError("denied", status="REQUEST_DENIED")

    with pytest.raises(GooglePlacesError):
        paginate.drain_nearby(FailingClient(), COORD, page_interval=0)


def test_max_pages_must_be_positive():
    with pytest.raises(ValueError):
        paginate.drain_nearby(DummyClient([[]]), COORD, max_pages=0)
