import httpx
import orjson
import pytest

from acquisition.config import ExtractionSettings, ScraperSettings
from acquisition.extraction.client import ExtractionClient
from acquisition.scraper.browser import NavigationResult

PRODUCT_URL = "https://shop.example/fr/produit/1"
PRODUCT_HTML = "<div><h1>Robe longue</h1><script>track()</script><p>49,90 €</p><div> <span> </span></div></div>"


class FakeMessage:
    """Broker delivery double recording ack/nack."""

    def __init__(self, payload=None, *, body=None, tag=0):
        self.body = body if body is not None else orjson.dumps(payload)
        self.delivery_tag = tag
        self.acked = False
        self.nacked = False
        self.requeued = None

    async def ack(self):
        self.acked = True

    async def nack(self, requeue=True):
        self.nacked = True
        self.requeued = requeue


class FakeSession:
    """Browser session double replaying scripted navigation outcomes.

    Outcomes are consumed in order; the last one repeats.
    """

    def __init__(self, outcomes, *, html=PRODUCT_HTML, has_body=True):
        self.outcomes = list(outcomes)
        self.html = html
        self.body_present = has_body
        self.user_agents = []
        self.profiles = []
        self.navigated = []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.exited += 1

    async def set_user_agent(self, user_agent):
        self.user_agents.append(user_agent)

    async def navigate(self, url, timeout):
        self.navigated.append(url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def settle(self, delay):
        return None

    async def has_body(self, timeout):
        return self.body_present

    async def sanitized_body(self, profile):
        self.profiles.append(profile)
        return self.html


class FakePublisher:
    def __init__(self):
        self.published = []

    async def publish(self, queue_name, payload):
        self.published.append((queue_name, payload))


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def ok(url=PRODUCT_URL, status=200):
    return NavigationResult(status=status, final_url=url)


def no_session():
    raise AssertionError("browser session must not be acquired")


@pytest.fixture
def fakes():
    """Namespace of test doubles shared across test modules."""

    class _Fakes:
        Message = FakeMessage
        Session = FakeSession
        Publisher = FakePublisher
        Sleep = SleepRecorder
        navigation = staticmethod(ok)
        no_session = staticmethod(no_session)
        product_url = PRODUCT_URL
        product_html = PRODUCT_HTML

    return _Fakes


@pytest.fixture
def scraper_settings():
    return ScraperSettings(
        max_attempts=3,
        browser_timeout=1.0,
        page_timeout=1.0,
        retry_base_delay=2.0,
        extraction_timeout=1.0,
        settle_delay=0.0,
    )


@pytest.fixture
def extraction_settings():
    return ExtractionSettings(api_url="http://extract.test/extract", max_attempts=3, retry_delay=0.0)


@pytest.fixture
def make_extraction_client(extraction_settings):
    """Build an ExtractionClient whose HTTP traffic goes to ``handler``."""

    def _make(handler):
        return ExtractionClient(extraction_settings, transport=httpx.MockTransport(handler))

    return _make
