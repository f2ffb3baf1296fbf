"""Failure ledger: failed and invalid items, and the sweeps over them."""
from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, List, Optional

from .config import DENIED_OFFER_IDS
from .errors import MISSING_CONTENT, UNIQUE_VIOLATION
from .models import FailedRecord, InvalidRecord, WorkItem
from .storage import Store

LOGGER = logging.getLogger(__name__)

# Failures that no retry will ever fix.
IGNORED_ERROR_MESSAGES = (
    '"id_product" must be one of [string, number]',
    MISSING_CONTENT,
    UNIQUE_VIOLATION,
)

MAX_RETRY_COUNT = 3


class FailureLedger:
    """Async facade over the store for failure bookkeeping.

    Store calls are blocking, so each one runs in a worker thread.
    """

    def __init__(
        self,
        store: Store,
        *,
        denied_offer_ids: AbstractSet[int] = DENIED_OFFER_IDS,
        ignored_messages=IGNORED_ERROR_MESSAGES,
        max_retry_count: int = MAX_RETRY_COUNT,
    ) -> None:
        self.store = store
        self.denied_offer_ids = denied_offer_ids
        self.ignored_messages = tuple(ignored_messages)
        self.max_retry_count = max_retry_count

    async def record_failure(self, item: WorkItem, message: str, id_product: Optional[str] = None) -> FailedRecord:
        record = await asyncio.to_thread(
            self.store.upsert_failed,
            item.key,
            item.url,
            item.offer_id,
            message,
            None if id_product is None else str(id_product),
        )
        LOGGER.warning(
            "Recorded failure for %s (retry_count=%d): %s",
            item.key,
            record.retry_count,
            message,
        )
        return record

    async def record_invalid(self, item: WorkItem, reason: str, url: Optional[str] = None) -> InvalidRecord:
        record = InvalidRecord(id_product_smi=item.key, offer_id=item.offer_id, url=url or item.url, reason=reason)
        await asyncio.to_thread(self.store.insert_invalid, record)
        LOGGER.info("Recorded invalid item %s: %s", item.key, reason)
        return record

    async def reconcile(self) -> int:
        """Mark failed records whose key now has a product as resolved."""
        count = await asyncio.to_thread(self.store.resolve_failed)
        LOGGER.info("Marked %d failed record(s) as resolved", count)
        return count

    async def apply_ignore_policy(self) -> int:
        """Ignore unrecoverable, exhausted and resolved records."""
        count = await asyncio.to_thread(self.store.ignore_failed, self.ignored_messages, self.max_retry_count)
        LOGGER.info("Marked %d failed record(s) as ignored", count)
        return count

    async def retry_candidates(self) -> List[WorkItem]:
        """Failed records worth another pass, one work item per natural key."""
        records = await asyncio.to_thread(
            self.store.retry_candidates,
            self.denied_offer_ids,
            self.max_retry_count,
        )
        seen = set()
        items: List[WorkItem] = []
        for record in records:
            if record.id_product_smi in seen:
                continue
            seen.add(record.id_product_smi)
            items.append(WorkItem(url=record.url, key=record.id_product_smi, offerId=record.offer_id))
        return items
