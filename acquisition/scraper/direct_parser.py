"""Local parsing of the direct offer's product pages.

That shop exposes structured product metadata (Open Graph and ``product:*``
meta tags, breadcrumbs, a characteristics table), so its pages skip the
extraction service.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

HOME_CRUMB = "Accueil"
COLOR_LABEL = "Couleur"

_WHITESPACE_RE = re.compile(r"\s+")
_PRICE_RE = re.compile(r"-?\d+(?:[.,]\d+)?")


def _meta(soup: BeautifulSoup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop})
    if tag is None:
        return None
    return tag.get("content") or None


def _price_string(raw: str) -> Optional[str]:
    """``"49,90 €"`` -> ``"49.9"``; None when no number is present."""
    match = _PRICE_RE.search(raw.replace("\xa0", "").replace(" ", ""))
    if match is None:
        return None
    value = float(match.group(0).replace(",", "."))
    return str(int(value)) if value.is_integer() else str(value)


def parse_direct_product(html: str) -> Dict[str, Any]:
    """Extract product fields from a direct-offer page.

    Returns the same field names the extraction service produces; fields not
    found on the page are None.
    """
    soup = BeautifulSoup(html, "html.parser")
    data: Dict[str, Any] = {
        "available_color": None,
        "keys": None,
        "category": None,
        "subcategory": None,
        "id_product": None,
        "price": None,
        "product_name": None,
        "currency": None,
        "availability": None,
        "description": None,
    }

    for row in soup.find_all("tr"):
        label = row.select_one("th.col.label")
        if label is not None and COLOR_LABEL in label.get_text():
            cell = row.select_one("td.col.data")
            if cell is not None:
                data["available_color"] = cell.get_text().strip()
            break

    crumbs: List[str] = []
    for element in soup.select("div.breadcrumbs-wrapper .breadcrumbs .items .item"):
        text = element.get_text().strip()
        if text and text != HOME_CRUMB:
            crumbs.append(text)
    if crumbs:
        data["keys"] = "/".join(crumbs)
        data["category"] = crumbs[0]
        data["subcategory"] = crumbs[-1]

    data["id_product"] = _meta(soup, "product:retailer_item_id")

    price_node = soup.select_one("div.price-box.price-final_price .price-container .price-wrapper .price")
    price_text = price_node.get_text().strip() if price_node is not None else ""
    if price_text:
        data["price"] = _price_string(price_text)
    else:
        amount = _meta(soup, "product:price:amount")
        if amount:
            data["price"] = _price_string(amount)

    data["currency"] = _meta(soup, "product:price:currency")
    data["product_name"] = _meta(soup, "og:title")

    availability = _meta(soup, "product:availability")
    if availability:
        data["availability"] = availability == "in stock"

    if _meta(soup, "og:description"):
        body = soup.body or soup
        data["description"] = _WHITESPACE_RE.sub(" ", body.get_text(" ")).strip()

    return data
