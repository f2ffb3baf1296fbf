"""Work producer: turns URL/key/offer triples into scrape-queue messages."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

import orjson
from pydantic import ValidationError

from ..models import WorkItem
from .broker import Publisher

LOGGER = logging.getLogger(__name__)


def load_articles(path: str | Path) -> List[WorkItem]:
    """Read an ``articles.json`` export.

    The file holds ``{"articles": [{"url": ..., "key": ..., "offerid": ...}]}``.
    Entries that do not parse are logged and skipped.
    """
    data = orjson.loads(Path(path).read_bytes())
    if not isinstance(data, dict):
        raise ValueError("articles file must contain a JSON object")

    items: List[WorkItem] = []
    for index, article in enumerate(data.get("articles") or [], 1):
        try:
            items.append(WorkItem.from_article(article))
        except (KeyError, TypeError, ValidationError) as exc:
            LOGGER.error("Skipping article #%d: %s", index, exc)
    return items


async def enqueue_items(publisher: Publisher, queue_name: str, items: Iterable[WorkItem]) -> int:
    """Publish work items; returns how many were sent."""
    sent = 0
    for item in items:
        await publisher.publish(queue_name, item.to_message())
        sent += 1
    LOGGER.info("Enqueued %d item(s) on %s", sent, queue_name)
    return sent
