"""Homepage-shape heuristic for product URLs."""
from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2}([-_][a-z]{2})?$")
MAX_LOCALE_SEGMENTS = 3


@dataclass(frozen=True)
class UrlCheck:
    url: str
    valid: bool
    message: str


def is_language_code(segment: str) -> bool:
    """``fr``, ``fr-fr`` and ``fr_FR`` are language codes; ``produit`` is not."""
    return bool(LANGUAGE_CODE_RE.match(segment.lower()))


def is_homepage(url: str) -> bool:
    """True when the path is empty or only made of up to three locale segments."""
    segments = [part for part in urlsplit(url).path.split("/") if part]
    if len(segments) > MAX_LOCALE_SEGMENTS:
        return False
    return all(is_language_code(segment) for segment in segments)


def check_url(url: str) -> UrlCheck:
    """Classify ``url`` before spending a scrape attempt on it."""
    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        return UrlCheck(url=url, valid=False, message=f"Invalid URL format: {url!r}")

    homepage = is_homepage(url)
    page_type = "Homepage" if homepage else "Non-Homepage"
    return UrlCheck(url=url, valid=not homepage, message=f"The URL represents a {page_type}.")
