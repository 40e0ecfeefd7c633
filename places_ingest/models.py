"""Core data models shared by the places ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True, slots=True)
class Coordinate:
    """Named seed location driving one nearby search."""

    name: str
    lat: float
    lon: float


@dataclass(slots=True)
class Review:
    author_name: str
    rating: Optional[float]
    text: str
    time: int


@dataclass(slots=True)
class EnrichedPlace:
    """Search stub merged with the fields of a place detail lookup."""

    place_id: Optional[str]
    name: str
    address: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    opening_hours: Optional[Dict[str, Any]] = None
    phone: str = ""
    types: List[str] = field(default_factory=list)
    photo_refs: List[str] = field(default_factory=list)
    reviews: List[Review] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    SKIPPED = "skipped"
    FATAL = "fatal"


@dataclass(slots=True)
class PlaceOutcome:
    """Result of enriching and writing a single place."""

    place_id: Optional[str]
    name: Optional[str]
    status: OutcomeStatus = OutcomeStatus.SUCCESS
    db_id: Optional[int] = None
    categories: int = 0
    photos: int = 0
    reviews: int = 0
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return f"place {self.name or '?'} ({self.place_id or 'no place_id'})"


@dataclass(slots=True)
class CoordinateOutcome:
    coordinate: Coordinate
    status: OutcomeStatus = OutcomeStatus.SUCCESS
    places_found: int = 0
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return f"coordinate {self.coordinate.name} ({self.coordinate.lat},{self.coordinate.lon})"


@dataclass(slots=True)
class RunReport:
    """Aggregated outcomes of one ingestion run."""

    coordinates: List[CoordinateOutcome] = field(default_factory=list)
    places: List[PlaceOutcome] = field(default_factory=list)

    def _count(self, items: List[Any], status: OutcomeStatus) -> int:
        return sum(1 for item in items if item.status is status)

    @property
    def failures(self) -> List[str]:
        labelled = [*self.coordinates, *self.places]
        return [f"{item.label}: {item.error}" for item in labelled if item.status is not OutcomeStatus.SUCCESS]

    def summary(self) -> Dict[str, int]:
        return {
            "coordinates_done": self._count(self.coordinates, OutcomeStatus.SUCCESS),
            "coordinates_failed": len(self.coordinates) - self._count(self.coordinates, OutcomeStatus.SUCCESS),
            "places_written": self._count(self.places, OutcomeStatus.SUCCESS),
            "places_skipped": self._count(self.places, OutcomeStatus.RETRYABLE)
            + self._count(self.places, OutcomeStatus.SKIPPED),
            "places_failed": self._count(self.places, OutcomeStatus.FATAL),
            "photos_written": sum(p.photos for p in self.places),
            "reviews_written": sum(p.reviews for p in self.places),
        }
