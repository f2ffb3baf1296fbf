"""Markup sanitization before extraction.

The first pass runs inside the page (see :data:`SANITIZE_SCRIPT`), the second
one runs here on the serialized body with BeautifulSoup.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence, Tuple

from bs4 import BeautifulSoup, Comment

LOGGER = logging.getLogger(__name__)

MAX_PRUNE_PASSES = 100

OUT_OF_PAGE_SELECTORS = ("script", "img", "style", "button", "link")


@dataclass(frozen=True)
class SanitizeProfile:
    """Which elements and attributes the in-page pass strips."""

    remove_selectors: Tuple[str, ...]
    remove_attributes: Tuple[str, ...]
    strip_data_attributes: bool = True
    prune_empty: bool = True
    whole_document: bool = False


DEFAULT_PROFILE = SanitizeProfile(
    remove_selectors=(
        "script",
        "style",
        "img",
        "iframe",
        "noscript",
        "svg",
        "path",
        ".advertisement",
        ".popup",
        ".newsletter",
        ".social-media",
        ".search-bar",
    ),
    remove_attributes=("class", "style", "tabindex"),
)

# Keeps class names and <head>: the direct parser reads meta tags and
# class-addressed price and breadcrumb blocks.
DIRECT_PARSE_PROFILE = SanitizeProfile(
    remove_selectors=(
        "script",
        "style",
        "img",
        "iframe",
        "footer",
        "aside",
        "noscript",
        "button",
        "svg",
        "path",
        ".advertisement",
        ".popup",
        ".newsletter",
        ".social-media",
        ".search-bar",
        ".carousel",
        "scalapay-modal-core",
    ),
    remove_attributes=("tabindex", "slot", "aria-hidden", "style"),
    strip_data_attributes=False,
    prune_empty=False,
    whole_document=True,
)

SANITIZE_SCRIPT = """
([selectors, attributes, stripData, wholeDocument]) => {
    for (const selector of selectors) {
        document.querySelectorAll(selector).forEach((element) => {
            if (element.parentNode) {
                element.parentNode.removeChild(element);
            }
        });
    }
    document.querySelectorAll("*").forEach((element) => {
        for (const name of attributes) {
            element.removeAttribute(name);
        }
        if (stripData) {
            Array.from(element.attributes)
                .filter((attr) => attr.name.startsWith("data-"))
                .forEach((attr) => element.removeAttribute(attr.name));
        }
    });
    const body = document.querySelector("body");
    if (!body) {
        return null;
    }
    return wholeDocument ? document.documentElement.outerHTML : body.innerHTML;
}
"""

_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_WHITESPACE_RE = re.compile(r"\s+")


def script_arguments(profile: SanitizeProfile) -> list:
    return [
        list(profile.remove_selectors),
        list(profile.remove_attributes),
        profile.strip_data_attributes,
        profile.whole_document,
    ]


def collapse_markup(html: str) -> str:
    """Strip HTML comments and collapse whitespace runs to a single space."""
    html = _COMMENT_RE.sub("", html)
    return _WHITESPACE_RE.sub(" ", html).strip()


def _is_empty(element) -> bool:
    return not element.get_text(strip=True) and element.find(True) is None


def prune_empty_tags(soup: BeautifulSoup, max_passes: int = MAX_PRUNE_PASSES) -> int:
    """Remove elements with neither text nor child elements until none are left.

    Each pass may expose new empty parents, so passes repeat until a full pass
    removes nothing or ``max_passes`` is reached.

    Returns
    -------
    int
        Number of passes that removed at least one element
    """
    passes = 0
    while passes < max_passes:
        empty = [element for element in soup.find_all(True) if _is_empty(element)]
        if not empty:
            return passes
        for element in empty:
            element.decompose()
        passes += 1

    LOGGER.warning("Empty-tag pruning stopped after %d passes", max_passes)
    return passes


def clean_markup(html: str, *, prune_empty: bool = True, selectors: Sequence[str] = OUT_OF_PAGE_SELECTORS) -> str:
    """Second, out-of-page sanitization pass."""
    soup = BeautifulSoup(collapse_markup(html), "html.parser")
    for element in soup.select(", ".join(selectors)):
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    if prune_empty:
        prune_empty_tags(soup)
    # Removed elements can leave neighbouring whitespace nodes side by side.
    return collapse_markup(str(soup))
