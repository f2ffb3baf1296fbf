"""Bounded, anti-bot aware scraping of one product page."""
from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, Awaitable, Callable, Optional

from ..antibot import RetryBudget, UserAgentPool
from ..config import DENIED_OFFER_IDS, ScraperSettings
from ..errors import (
    BRAND_NOT_ALLOWED,
    AntiBotBlockError,
    BodyMissingError,
    HomepageShapeError,
    InvalidItemError,
    NotFoundError,
    ScrapeFailedError,
    TransientNetworkError,
)
from ..models import ScrapeResult, WorkItem
from .browser import BrowserSession, PlaywrightSession
from .sanitizer import DEFAULT_PROFILE, DIRECT_PARSE_PROFILE, SanitizeProfile, clean_markup
from .urls import is_homepage

LOGGER = logging.getLogger(__name__)

BLOCKED_STATUSES = frozenset({403, 503})

SessionFactory = Callable[[], BrowserSession]
Sleep = Callable[[float], Awaitable[None]]


class ScrapeOrchestrator:
    """Turn a work item into sanitized page content or a terminal verdict.

    One browser session is acquired per :meth:`scrape` call and is closed on
    every exit path. Inside it, at most ``settings.max_attempts`` navigations
    are made, each with a fresh random user agent.
    """

    def __init__(
        self,
        settings: ScraperSettings,
        *,
        session_factory: Optional[SessionFactory] = None,
        user_agents: Optional[UserAgentPool] = None,
        denied_offer_ids: AbstractSet[int] = DENIED_OFFER_IDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory or (lambda: PlaywrightSession(settings))
        self.user_agents = user_agents or UserAgentPool()
        self.denied_offer_ids = denied_offer_ids
        self._sleep = sleep

    async def scrape(self, item: WorkItem, *, direct: bool = False) -> ScrapeResult:
        """Scrape ``item.url``.

        Parameters
        ----------
        item : WorkItem
            URL, natural key and offer id
        direct : bool
            Keep the markup the direct parser needs instead of the extraction profile

        Returns
        -------
        ScrapeResult
            Content, or an ``invalid_reason`` for terminal verdicts

        Raises
        ------
        BrowserConnectTimeout
            Browser session could not be acquired in time
        ScrapeFailedError
            Every attempt ended in a block or transient failure
        """
        if item.offer_id in self.denied_offer_ids:
            LOGGER.info("Offer %s is deny-listed, skipping %s", item.offer_id, item.url)
            return ScrapeResult(url=item.url, final_url=item.url, invalid_reason=BRAND_NOT_ALLOWED)

        profile = DIRECT_PARSE_PROFILE if direct else DEFAULT_PROFILE
        budget = RetryBudget(max_attempts=self.settings.max_attempts, backoff_base=self.settings.retry_base_delay)
        last_error: Optional[Exception] = None

        async with self.session_factory() as session:
            while budget.should_retry():
                attempt = budget.start_attempt()
                try:
                    return await self._attempt(session, item, profile)
                except InvalidItemError as exc:
                    LOGGER.info("Invalid item %s: %s", item.url, exc.reason)
                    return ScrapeResult(url=item.url, final_url=item.url, invalid_reason=exc.reason)
                except AntiBotBlockError as exc:
                    LOGGER.warning(
                        "Attempt %d/%d: blocked by anti-bot protection (status %d) on %s",
                        attempt,
                        budget.max_attempts,
                        exc.status,
                        item.url,
                    )
                    last_error = exc
                except asyncio.TimeoutError:
                    last_error = TransientNetworkError(
                        f"Content extraction timeout after {self.settings.extraction_timeout:.1f}s"
                    )
                    LOGGER.warning("Attempt %d/%d failed for %s: %s", attempt, budget.max_attempts, item.url, last_error)
                except Exception as exc:
                    LOGGER.warning("Attempt %d/%d failed for %s: %s", attempt, budget.max_attempts, item.url, exc)
                    last_error = exc

                if budget.should_retry():
                    delay = budget.get_backoff_delay()
                    LOGGER.info("Retrying %s in %.1fs", item.url, delay)
                    await self._sleep(delay)

        LOGGER.error("Scraping failed after %d attempts: %s", budget.attempts, item.url)
        raise ScrapeFailedError(budget.attempts, last_error)

    async def _attempt(self, session: BrowserSession, item: WorkItem, profile: SanitizeProfile) -> ScrapeResult:
        await session.set_user_agent(self.user_agents.get_random())
        navigation = await session.navigate(item.url, self.settings.page_timeout)
        LOGGER.debug(
            "Navigated to %s: status=%s final_url=%s redirects=%d",
            item.url,
            navigation.status,
            navigation.final_url,
            len(navigation.redirect_chain),
        )

        if navigation.status == 404:
            raise NotFoundError()
        if is_homepage(navigation.final_url):
            raise HomepageShapeError()
        if navigation.status in BLOCKED_STATUSES:
            raise AntiBotBlockError(navigation.status)

        await session.settle(self.settings.settle_delay)
        if not await session.has_body(self.settings.page_timeout):
            raise BodyMissingError("Body not found")

        raw = await asyncio.wait_for(session.sanitized_body(profile), timeout=self.settings.extraction_timeout)
        if raw is None:
            raise BodyMissingError("Body not found")

        content = clean_markup(raw, prune_empty=profile.prune_empty)
        return ScrapeResult(url=item.url, final_url=navigation.final_url, content=content)
