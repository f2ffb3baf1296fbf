"""Per-message processing callbacks for the scrape and extraction queues."""
from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, Any, Dict, Optional, Sequence

from pydantic import ValidationError

from .config import DEFAULT_MODEL, DENIED_OFFER_IDS
from .consumer.broker import Publisher
from .errors import BRAND_NOT_ALLOWED, MISSING_CONTENT, ConfigError
from .extraction.client import ExtractionClient
from .extraction.validator import normalize_sentinels, validate_product
from .ledger import FailureLedger
from .models import ExtractionMessage, ProductRecord, WorkItem
from .scraper.direct_parser import parse_direct_product
from .scraper.orchestrator import ScrapeOrchestrator
from .storage import Store

LOGGER = logging.getLogger(__name__)

MISSING_CREDENTIAL = "Extraction message carries no api_key."


class AcquisitionPipeline:
    """Glue between the queues, the scraper, the extraction service and storage.

    Every per-item error ends up as a failed or invalid record; only ledger
    and broker write failures escape to the consumer, which then requeues.
    """

    def __init__(
        self,
        *,
        orchestrator: ScrapeOrchestrator,
        extraction_client: ExtractionClient,
        store: Store,
        ledger: FailureLedger,
        publisher: Optional[Publisher] = None,
        extraction_queue: str = "products-queue",
        model: str = DEFAULT_MODEL,
        credentials: Sequence[str] = (),
        denied_offer_ids: AbstractSet[int] = DENIED_OFFER_IDS,
        direct_offer_id: Optional[int] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.extraction_client = extraction_client
        self.store = store
        self.ledger = ledger
        self.publisher = publisher
        self.extraction_queue = extraction_queue
        self.model = model
        self.credentials = list(credentials)
        self.denied_offer_ids = denied_offer_ids
        self.direct_offer_id = direct_offer_id

    def is_direct(self, item: WorkItem) -> bool:
        return self.direct_offer_id is not None and item.offer_id == self.direct_offer_id

    async def handle_scrape_message(self, payload: Dict[str, Any]) -> None:
        """Scrape one page and hand its content to the extraction queue."""
        try:
            item = WorkItem.model_validate(payload)
        except ValidationError as exc:
            LOGGER.error("Dropping malformed scrape message %r: %s", payload, exc)
            return

        if item.offer_id in self.denied_offer_ids:
            await self.ledger.record_invalid(item, BRAND_NOT_ALLOWED)
            return

        if self.is_direct(item):
            await self.extract_direct(item)
            return

        try:
            result = await self.orchestrator.scrape(item)
        except Exception as exc:
            await self.ledger.record_failure(item, str(exc))
            return

        if result.is_invalid:
            await self.ledger.record_invalid(item, result.invalid_reason, result.final_url)
            return

        if self.publisher is None:
            raise ConfigError("Scrape handler needs a publisher for the extraction queue")

        message = ExtractionMessage(
            url=result.final_url,
            key=item.key,
            offerId=item.offer_id,
            model=self.model,
            content=result.content,
        )
        await self.publisher.publish(self.extraction_queue, message.to_message())
        LOGGER.info("Queued %s for extraction (%d chars)", item.key, len(result.content or ""))

    async def handle_extraction_message(self, payload: Dict[str, Any]) -> None:
        """Extract, validate and store one product."""
        try:
            message = ExtractionMessage.model_validate(payload)
        except ValidationError as exc:
            LOGGER.error("Dropping malformed extraction message: %s", exc)
            return

        item = message.work_item()
        if not message.content:
            await self.ledger.record_failure(item, MISSING_CONTENT)
            return
        if not message.api_key:
            await self.ledger.record_failure(item, MISSING_CREDENTIAL)
            return

        await self._extract_and_store(item, message.content, message.url, message.api_key, message.model)

    async def extract_one(self, item: WorkItem) -> Optional[ProductRecord]:
        """Scrape, extract and store a single item outside the queues.

        Uses the first configured credential. Returns the stored product, or
        None when the item ended up as an invalid or failed record.
        """
        if item.offer_id in self.denied_offer_ids:
            await self.ledger.record_invalid(item, BRAND_NOT_ALLOWED)
            return None

        if self.is_direct(item):
            return await self.extract_direct(item)

        if not self.credentials:
            raise ConfigError("extract-one needs at least one extraction credential")

        try:
            result = await self.orchestrator.scrape(item)
        except Exception as exc:
            await self.ledger.record_failure(item, str(exc))
            return None

        if result.is_invalid:
            await self.ledger.record_invalid(item, result.invalid_reason, result.final_url)
            return None

        return await self._extract_and_store(item, result.content, result.final_url, self.credentials[0], self.model)

    async def extract_direct(self, item: WorkItem) -> Optional[ProductRecord]:
        """Scrape and parse a direct-offer page locally, then store it."""
        id_product = None
        try:
            result = await self.orchestrator.scrape(item, direct=True)
            if result.is_invalid:
                await self.ledger.record_invalid(item, result.invalid_reason, result.final_url)
                return None

            data = parse_direct_product(result.content or "")
            id_product = data.get("id_product")
            record = validate_product(
                {**data, "url": item.url, "id_product_smi": item.key, "offer_id": item.offer_id},
                self.direct_offer_id,
            )
            await self._store(record)
            return record
        except Exception as exc:
            LOGGER.error("Direct extraction failed for %s: %s", item.url, exc)
            await self.ledger.record_failure(item, str(exc), id_product)
            return None

    async def _extract_and_store(
        self,
        item: WorkItem,
        content: str,
        url: str,
        api_key: str,
        model: Optional[str],
    ) -> Optional[ProductRecord]:
        id_product = None
        try:
            data = await self.extraction_client.extract(content, url, api_key, model or self.model)
            id_product = normalize_sentinels(data).get("id_product")
            record = validate_product(
                {**data, "url": url, "id_product_smi": item.key, "offer_id": item.offer_id},
                self.direct_offer_id,
            )
            await self._store(record)
            return record
        except Exception as exc:
            LOGGER.error("Extraction failed for %s: %s", item.key, exc)
            await self.ledger.record_failure(item, str(exc), id_product)
            return None

    async def _store(self, record: ProductRecord) -> None:
        inserted = await asyncio.to_thread(self.store.insert_product, record)
        if inserted:
            LOGGER.info("Stored product %s for key %s", record.id_product, record.id_product_smi)
