"""Pydantic models shared across pipeline components."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, StrictFloat, StrictInt, StrictStr


class QueueKind(str, Enum):
    """Which stage a work item is queued for."""

    SCRAPE = "scrape"
    EXTRACTION = "extraction"


class WorkItem(BaseModel):
    """One URL/key/offer triple travelling through the queues.

    Wire format uses ``key`` and ``offerId``; file imports spell the offer
    ``offerid``.
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str
    key: str
    offer_id: int = Field(alias="offerId")
    queue_kind: QueueKind = QueueKind.SCRAPE

    @classmethod
    def from_article(cls, article: Dict[str, Any]) -> "WorkItem":
        """Build from an ``articles.json`` entry."""
        offer_id = article.get("offerId", article.get("offerid"))
        return cls(url=article["url"], key=article["key"], offerId=offer_id)

    def to_message(self) -> Dict[str, Any]:
        return {"url": self.url, "key": self.key, "offerId": self.offer_id}


class ExtractionMessage(BaseModel):
    """Extraction-queue payload; ``api_key`` is attached at dispatch."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    key: str
    offer_id: int = Field(alias="offerId")
    model: Optional[str] = None
    content: Optional[str] = None
    api_key: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "model": self.model,
            "key": self.key,
            "offerId": self.offer_id,
            "content": self.content,
        }

    def work_item(self) -> WorkItem:
        return WorkItem(url=self.url, key=self.key, offerId=self.offer_id, queue_kind=QueueKind.EXTRACTION)


class ScrapeResult(BaseModel):
    """Outcome of one scrape: sanitized content or a terminal invalid reason."""

    url: str
    final_url: str
    content: Optional[str] = None
    invalid_reason: Optional[str] = None

    @property
    def is_invalid(self) -> bool:
        return self.invalid_reason is not None


class ProductRecord(BaseModel):
    """Validated product as written to the ``product`` table."""

    id_product: Union[StrictStr, StrictInt, StrictFloat]
    product_name: StrictStr
    available_color: Optional[StrictStr] = None
    category: Optional[StrictStr] = None
    subcategory: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    price: Optional[Union[StrictStr, StrictInt, StrictFloat]] = None
    url: StrictStr
    id_product_smi: StrictStr
    offer_id: PositiveInt
    keys: Optional[StrictStr] = None
    currency: Optional[StrictStr] = None
    availability: Optional[bool] = None


class FailedRecord(BaseModel):
    id_product_smi: str
    url: str
    offer_id: int
    error_message: str
    retry_count: int = 0
    resolved: bool = False
    ignore: bool = False
    id_product: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InvalidRecord(BaseModel):
    id_product_smi: str
    offer_id: int
    url: str
    reason: str
