"""Environment-driven configuration for the pipeline.

Values are read once at startup. Durations that the deployment environment
historically expressed in milliseconds (``BROWSER_TIMEOUT``, ``PAGE_TIMEOUT``,
``RETRY_BASE_DELAY``, ``EXTRACTION_TIMEOUT``) are converted to seconds here so
the rest of the code only deals in seconds.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError

SCRAPE_QUEUE = "scrapper-queue"
EXTRACTION_QUEUE = "products-queue"
DEFAULT_MODEL = "gemini-1.5-flash"

# Offers whose pages must never be fetched.
DENIED_OFFER_IDS: FrozenSet[int] = frozenset(
    {11, 1077, 1460, 1579, 1978, 2616, 3824, 935, 55450290, 2640, 3888, 3138, 1030, 34}
)


def _require(name: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        raise ConfigError(f"{name} environment variable is required")
    return value.strip()


def _int(name: str, default: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise ConfigError(f"{name} environment variable is required")
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _float(name: str, default: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise ConfigError(f"{name} environment variable is required")
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _millis(name: str) -> float:
    return _float(name) / 1000.0


def _csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class ScraperSettings:
    """Browser and retry knobs for the scrape orchestrator (seconds)."""

    max_attempts: int = 3
    browser_timeout: float = 30.0
    page_timeout: float = 30.0
    retry_base_delay: float = 2.0
    extraction_timeout: float = 15.0
    settle_delay: float = 2.0
    headless: bool = True

    @classmethod
    def from_env(cls) -> ScraperSettings:
        return cls(
            max_attempts=_int("SCRAPER_MAX_ATTEMPTS"),
            browser_timeout=_millis("BROWSER_TIMEOUT"),
            page_timeout=_millis("PAGE_TIMEOUT"),
            retry_base_delay=_millis("RETRY_BASE_DELAY"),
            extraction_timeout=_millis("EXTRACTION_TIMEOUT"),
            headless=os.getenv("BROWSER_HEADLESS", "true").lower() in {"1", "true", "yes", "on"},
        )


@dataclass
class ExtractionSettings:
    """Outbound extraction service settings."""

    api_url: str
    max_attempts: int = 3
    retry_delay: float = 1.0
    model: str = DEFAULT_MODEL
    request_timeout: float = 120.0

    @classmethod
    def from_env(cls) -> ExtractionSettings:
        return cls(
            api_url=_require("LLM_API_URL"),
            max_attempts=_int("LLM_MAX_ATTEMPTS"),
            retry_delay=_float("LLM_RETRY_DELAY", 1.0),
            model=os.getenv("LLM_MODEL", DEFAULT_MODEL),
            request_timeout=_float("LLM_REQUEST_TIMEOUT", 120.0),
        )


@dataclass
class QueueSettings:
    """Per-queue consumption settings.

    ``daily_limit`` of None means the queue has no quota and no credentials
    are attached to its messages.
    """

    name: str
    batch_size: int = 5
    batch_delay: float = 60.0
    poll_interval: float = 1.0
    item_timeout: float = 300.0
    daily_limit: Optional[int] = None
    credentials: List[str] = field(default_factory=list)

    @property
    def has_quota(self) -> bool:
        return self.daily_limit is not None

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ConfigError(f"{self.name}: batch size must be positive")
        if self.has_quota:
            if self.daily_limit < self.batch_size:
                raise ConfigError(f"{self.name}: daily limit is smaller than one batch")
            if not self.credentials:
                raise ConfigError(f"{self.name}: a quota-bearing queue needs at least one credential")


@dataclass
class PipelineConfig:
    """Everything the consumer process needs at startup."""

    rabbitmq_url: str
    database_url: str
    scraper: ScraperSettings
    extraction: ExtractionSettings
    scrape_queue: QueueSettings
    extraction_queue: QueueSettings
    denied_offer_ids: FrozenSet[int] = DENIED_OFFER_IDS
    direct_offer_id: Optional[int] = None

    @property
    def credentials(self) -> List[str]:
        return self.extraction_queue.credentials

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> PipelineConfig:
        """Load configuration from the environment (and ``.env`` if present)."""
        load_dotenv(env_file)

        item_timeout = _float("ITEM_TIMEOUT", 300.0)
        scrape_queue = QueueSettings(
            name=os.getenv("SCRAPE_QUEUE", SCRAPE_QUEUE),
            batch_size=_int("SCRAPE_BATCH_SIZE", 15),
            batch_delay=_float("SCRAPE_BATCH_DELAY", 20.0),
            item_timeout=item_timeout,
        )
        extraction_queue = QueueSettings(
            name=os.getenv("EXTRACTION_QUEUE", EXTRACTION_QUEUE),
            batch_size=_int("EXTRACTION_BATCH_SIZE", 5),
            batch_delay=_float("EXTRACTION_BATCH_DELAY", 60.0),
            item_timeout=item_timeout,
            daily_limit=_int("EXTRACTION_DAILY_LIMIT", 1500),
            credentials=_csv(_require("EXTRACTION_API_KEYS")),
        )
        scrape_queue.validate()
        extraction_queue.validate()

        denied = DENIED_OFFER_IDS
        if raw := os.getenv("DENIED_OFFER_IDS"):
            try:
                denied = frozenset(int(part) for part in _csv(raw))
            except ValueError as exc:
                raise ConfigError(f"DENIED_OFFER_IDS must be integers, got {raw!r}") from exc

        direct_offer_id = None
        if os.getenv("DIRECT_OFFER_ID"):
            direct_offer_id = _int("DIRECT_OFFER_ID")

        return cls(
            rabbitmq_url=_require("RABBITMQ_URL"),
            database_url=_require("DATABASE_URL"),
            scraper=ScraperSettings.from_env(),
            extraction=ExtractionSettings.from_env(),
            scrape_queue=scrape_queue,
            extraction_queue=extraction_queue,
            denied_offer_ids=denied,
            direct_offer_id=direct_offer_id,
        )
