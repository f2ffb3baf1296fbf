"""Product page scraping with Playwright."""

from .browser import BrowserSession, NavigationResult, PlaywrightSession
from .direct_parser import parse_direct_product
from .orchestrator import ScrapeOrchestrator
from .sanitizer import DEFAULT_PROFILE, DIRECT_PARSE_PROFILE, clean_markup, prune_empty_tags
from .urls import UrlCheck, check_url, is_homepage, is_language_code

__all__ = [
    "BrowserSession",
    "NavigationResult",
    "PlaywrightSession",
    "ScrapeOrchestrator",
    "parse_direct_product",
    "DEFAULT_PROFILE",
    "DIRECT_PARSE_PROFILE",
    "clean_markup",
    "prune_empty_tags",
    "UrlCheck",
    "check_url",
    "is_homepage",
    "is_language_code",
]
