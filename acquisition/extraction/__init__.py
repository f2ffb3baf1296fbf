"""Extraction service client and product validation."""

from .client import ExtractionClient
from .validator import SENTINEL_VALUES, normalize_sentinels, validate_product

__all__ = [
    "ExtractionClient",
    "SENTINEL_VALUES",
    "normalize_sentinels",
    "validate_product",
]
