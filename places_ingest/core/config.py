"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

RANK_BY_CHOICES = {"distance", "prominence"}
FAILURE_POLICY_CHOICES = {"skip", "abort"}


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    pg_database: str
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_user: str = ""
    pg_password: str = ""
    coordinates_file: str = "coordinates.json"
    max_pages: int = 3
    concurrency: int = 4
    search_concurrency: int = 2
    page_delay_seconds: float = 2.0
    retry_limit: int = 2
    retry_delay_seconds: float = 1.2
    rank_by: str = "distance"
    search_radius: int = 1500
    search_type: Optional[str] = None
    search_keyword: Optional[str] = None
    place_failure_policy: str = "skip"
    ensure_schema: bool = False
    log_level: str = "INFO"

    def connection_kwargs(self) -> dict:
        """Keyword arguments accepted by ``psycopg2.connect`` and its pools."""
        return {
            "host": self.pg_host,
            "port": self.pg_port,
            "user": self.pg_user,
            "password": self.pg_password,
            "dbname": self.pg_database,
            "connect_timeout": 10,
        }

    def validate(self) -> None:
        """Raise ``ConfigError`` when the worker cannot run with these settings."""
        if not self.google_api_key:
            raise ConfigError("GOOGLE_API_KEY must be set in the environment.")
        if not self.pg_database:
            raise ConfigError("PG_DATABASE must be set in the environment.")
        if self.concurrency < 1 or self.search_concurrency < 1:
            raise ConfigError("WORKER_CONCURRENCY and WORKER_SEARCH_CONCURRENCY must be positive.")
        if self.max_pages < 1:
            raise ConfigError("WORKER_MAX_PAGES must be at least 1.")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _get_choice(name: str, default: str, choices: set) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{name} must be one of {sorted(choices)}, got {value!r}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    pg_database = os.getenv("PG_DATABASE", "")

    if not pg_database:
        logger.warning("PG_DATABASE is not set; database operations will fail.")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")

    return Settings(
        google_api_key=google_api_key,
        pg_database=pg_database,
        pg_host=os.getenv("PG_HOST") or "localhost",
        pg_port=_get_int("PG_PORT", 5432),
        pg_user=os.getenv("PG_USER", ""),
        pg_password=os.getenv("PG_PASSWORD", ""),
        coordinates_file=os.getenv("COORDINATES_FILE") or "coordinates.json",
        max_pages=_get_int("WORKER_MAX_PAGES", 3),
        concurrency=_get_int("WORKER_CONCURRENCY", 4),
        search_concurrency=_get_int("WORKER_SEARCH_CONCURRENCY", 2),
        page_delay_seconds=_get_float("PAGE_DELAY_SECONDS", 2.0),
        retry_limit=_get_int("PLACES_RETRY_LIMIT", 2),
        retry_delay_seconds=_get_float("PLACES_RETRY_DELAY", 1.2),
        rank_by=_get_choice("SEARCH_RANK_BY", "distance", RANK_BY_CHOICES),
        search_radius=_get_int("SEARCH_RADIUS", 1500),
        search_type=os.getenv("SEARCH_TYPE") or None,
        search_keyword=os.getenv("SEARCH_KEYWORD") or None,
        place_failure_policy=_get_choice("PLACE_FAILURE_POLICY", "skip", FAILURE_POLICY_CHOICES),
        ensure_schema=os.getenv("PG_ENSURE_SCHEMA", "false").lower() in {"1", "true", "yes"},
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
