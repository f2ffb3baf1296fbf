import asyncio

import httpx
import pytest

from acquisition.errors import BRAND_NOT_ALLOWED, MISSING_CONTENT, UNIQUE_VIOLATION
from acquisition.extraction.client import MAX_ATTEMPTS_MESSAGE
from acquisition.ledger import FailureLedger
from acquisition.models import ProductRecord, WorkItem
from acquisition.pipeline import AcquisitionPipeline
from acquisition.scraper.orchestrator import ScrapeOrchestrator
from acquisition.storage import InMemoryStore

EXTRACTED = {
    "id_product": "P1",
    "product_name": "Robe longue",
    "available_color": "Noir",
    "category": "nan",
    "price": "49.9",
    "currency": "EUR",
    "availability": "true",
}

DIRECT_PAGE = """
<html><head>
<meta property="og:title" content="Nuisette dentelle"/>
<meta property="og:description" content="Nuisette"/>
<meta property="product:retailer_item_id" content="DS-1"/>
<meta property="product:price:amount" content="39.90"/>
<meta property="product:price:currency" content="EUR"/>
<meta property="product:availability" content="in stock"/>
</head><body><p>Nuisette dentelle noire</p></body></html>
"""


class Harness:
    def __init__(self, settings, fakes, make_client, session=None, handler=None, **kwargs):
        self.session = session or fakes.Session([fakes.navigation()])
        self.requests = []
        self.store = InMemoryStore()
        self.publisher = fakes.Publisher()

        def default_handler(request):
            self.requests.append(request)
            return httpx.Response(200, json={"json_data": dict(EXTRACTED)})

        self.pipeline = AcquisitionPipeline(
            orchestrator=ScrapeOrchestrator(
                settings,
                session_factory=kwargs.pop("session_factory", lambda: self.session),
                sleep=fakes.Sleep(),
            ),
            extraction_client=make_client(handler or default_handler),
            store=self.store,
            ledger=FailureLedger(self.store),
            publisher=self.publisher,
            credentials=["key-1", "key-2"],
            **kwargs,
        )

    def scrape(self, payload):
        asyncio.run(self.pipeline.handle_scrape_message(payload))

    def extract(self, payload):
        asyncio.run(self.pipeline.handle_extraction_message(payload))


@pytest.fixture
def harness(scraper_settings, fakes, make_extraction_client):
    def _make(**kwargs):
        return Harness(scraper_settings, fakes, make_extraction_client, **kwargs)

    return _make


def _scrape_payload(url="https://shop.example/fr/produit/1", offer_id=42):
    return {"url": url, "key": "k1", "offerId": offer_id}


def test_scrape_then_extract_persists_product(harness):
    h = harness()

    h.scrape(_scrape_payload())

    ((queue_name, message),) = h.publisher.published
    assert queue_name == "products-queue"
    assert message["key"] == "k1"
    assert message["offerId"] == 42
    assert message["url"] == "https://shop.example/fr/produit/1"
    assert "Robe longue" in message["content"]
    assert "api_key" not in message

    h.extract({**message, "api_key": "key-2"})

    product = h.store.products["P1"]
    assert product.id_product_smi == "k1"
    assert product.offer_id == 42
    assert product.category is None
    assert product.availability is True
    assert h.store.failed == {}
    assert "key-2" in h.requests[0].content.decode()


def test_extraction_fault_records_failure(harness):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    h = harness(handler=handler)
    message = {"url": "https://shop.example/fr/produit/1", "key": "k1", "offerId": 42, "content": "<p>x</p>", "api_key": "key-1"}

    h.extract(message)

    assert len(calls) == 3
    failed = h.store.get_failed("k1")
    assert failed.retry_count == 0
    assert failed.error_message == MAX_ATTEMPTS_MESSAGE
    assert h.store.products == {}

    h.extract(message)
    assert h.store.get_failed("k1").retry_count == 1


def test_homepage_becomes_invalid(harness, fakes):
    h = harness(session=fakes.Session([fakes.navigation("https://shop.example/fr/")]))

    h.scrape(_scrape_payload(url="https://shop.example/fr/"))

    assert h.store.invalid[("k1", 42)].reason == "The URL represents a Homepage."
    assert h.publisher.published == []
    assert h.store.failed == {}


def test_denied_offer_becomes_invalid_without_session(harness, fakes):
    h = harness(session_factory=fakes.no_session)

    h.scrape(_scrape_payload(offer_id=11))

    assert h.store.invalid[("k1", 11)].reason == BRAND_NOT_ALLOWED
    assert h.publisher.published == []


def test_scrape_failure_records_failure(harness, fakes):
    h = harness(session=fakes.Session([fakes.navigation(status=503)]))

    h.scrape(_scrape_payload())

    failed = h.store.get_failed("k1")
    assert failed.error_message.startswith("Scraping failed after 3 attempts")
    assert h.publisher.published == []


def test_missing_content_records_failure(harness):
    h = harness()

    h.extract({"url": "https://shop.example/p/1", "key": "k1", "offerId": 42, "content": None, "api_key": "key-1"})

    assert h.store.get_failed("k1").error_message == MISSING_CONTENT
    assert h.requests == []


def test_duplicate_product_records_unique_violation(harness):
    h = harness()
    h.store.insert_product(
        ProductRecord(id_product="P1", product_name="x", url="https://shop.example/other", id_product_smi="other", offer_id=42)
    )

    h.extract({"url": "https://shop.example/p/1", "key": "k1", "offerId": 42, "content": "<p>x</p>", "api_key": "key-1"})

    failed = h.store.get_failed("k1")
    assert failed.error_message == UNIQUE_VIOLATION
    assert failed.id_product == "P1"


def test_redelivered_product_is_not_a_failure(harness):
    h = harness()
    message = {"url": "https://shop.example/p/1", "key": "k1", "offerId": 42, "content": "<p>x</p>", "api_key": "key-1"}

    h.extract(message)
    h.extract(message)

    assert list(h.store.products) == ["P1"]
    assert h.store.failed == {}


def test_malformed_message_is_dropped(harness):
    h = harness()

    h.scrape({"url": "https://shop.example/p/1"})
    h.extract({"key": "k1"})

    assert h.store.failed == {}
    assert h.publisher.published == []


def test_extract_one_uses_first_credential(harness):
    h = harness()

    product = asyncio.run(h.pipeline.extract_one(WorkItem(url="https://shop.example/fr/produit/1", key="k1", offerId=42)))

    assert product.id_product == "P1"
    assert h.store.products["P1"].id_product_smi == "k1"
    body = h.requests[0].content.decode()
    assert "key-1" in body and "key-2" not in body
    assert h.publisher.published == []


def test_direct_offer_is_parsed_locally(harness, fakes):
    h = harness(session=fakes.Session([fakes.navigation()], html=DIRECT_PAGE), direct_offer_id=2000)

    h.scrape(_scrape_payload(offer_id=2000))

    product = h.store.products["DS-1"]
    assert product.product_name == "Nuisette dentelle"
    assert product.price == "39.9"
    assert product.availability is True
    assert h.requests == []
    assert h.publisher.published == []
