"""Error taxonomy for the acquisition pipeline."""
from __future__ import annotations

from typing import Optional

BRAND_NOT_ALLOWED = "This brand is not allowed to be scraped"
NOT_FOUND = "URL returns 404 Not Found"
UNIQUE_VIOLATION = "Unique constraint violation."
MISSING_CONTENT = "Extraction message carries no content."


class AcquisitionError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(AcquisitionError):
    """Required configuration is missing or malformed."""


class TransientNetworkError(AcquisitionError):
    """Navigation or connection failure worth another attempt."""


class BrowserConnectTimeout(TransientNetworkError):
    """Browser session could not be acquired in time."""


class BodyMissingError(TransientNetworkError):
    """Page loaded without a <body> element."""


class AntiBotBlockError(TransientNetworkError):
    """Upstream answered 403/503, usually a bot challenge."""

    def __init__(self, status: int) -> None:
        super().__init__(f"Blocked by anti-bot protection, status code = {status}")
        self.status = status


class ScrapeFailedError(AcquisitionError):
    """All scrape attempts were used up."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        message = f"Scraping failed after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class InvalidItemError(AcquisitionError):
    """Terminal classification; the item becomes an InvalidRecord."""

    reason: str = "Invalid item"

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason or self.reason
        super().__init__(self.reason)


class NotFoundError(InvalidItemError):
    reason = NOT_FOUND


class HomepageShapeError(InvalidItemError):
    reason = "The URL represents a Homepage."


class DisallowedBrandError(InvalidItemError):
    reason = BRAND_NOT_ALLOWED


class ExtractionError(AcquisitionError):
    """Extraction service answered with a non-retryable failure."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ExtractionRemoteFault(ExtractionError):
    """Extraction service answered with a server fault (500)."""


class ProductValidationError(AcquisitionError):
    """Extracted fields do not satisfy the product schema."""


class DuplicateProductError(AcquisitionError):
    """Product insert hit a unique constraint."""

    def __init__(self) -> None:
        super().__init__(UNIQUE_VIOLATION)
