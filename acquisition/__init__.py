"""Product acquisition pipeline.

This package turns product page URLs into validated product records:
- RabbitMQ consumption with batching, daily quotas and credential rotation
- Playwright scraping with anti-bot retries and markup sanitization
- AI extraction service client and schema validation
- PostgreSQL persistence with a failure ledger for retries
"""

from .config import PipelineConfig
from .errors import AcquisitionError
from .models import ExtractionMessage, FailedRecord, InvalidRecord, ProductRecord, WorkItem
from .pipeline import AcquisitionPipeline

__all__ = [
    "PipelineConfig",
    "AcquisitionError",
    "ExtractionMessage",
    "FailedRecord",
    "InvalidRecord",
    "ProductRecord",
    "WorkItem",
    "AcquisitionPipeline",
]
