"""Playwright browser session used by the scrape orchestrator."""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import ScraperSettings
from ..errors import BrowserConnectTimeout, TransientNetworkError
from .sanitizer import SANITIZE_SCRIPT, SanitizeProfile, script_arguments

LOGGER = logging.getLogger(__name__)

VIEWPORT = {"width": 1366, "height": 768}


@dataclass
class NavigationResult:
    """Final response of a navigation, after redirects."""

    status: Optional[int]
    final_url: str
    redirect_chain: List[str] = field(default_factory=list)


class BrowserSession(Protocol):
    """What the orchestrator needs from a browser session."""

    async def set_user_agent(self, user_agent: str) -> None:
        ...

    async def navigate(self, url: str, timeout: float) -> NavigationResult:
        ...

    async def settle(self, delay: float) -> None:
        ...

    async def has_body(self, timeout: float) -> bool:
        ...

    async def sanitized_body(self, profile: SanitizeProfile) -> Optional[str]:
        ...

    async def __aenter__(self) -> "BrowserSession":
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class PlaywrightSession:
    """One Chromium browser per scrape, closed on exit.

    Use as an async context manager; a fresh session is opened for every
    scrape so no cookies or fingerprints carry over between items. Each
    attempt gets its own context and page carrying that attempt's user agent.
    """

    def __init__(self, settings: ScraperSettings) -> None:
        self.settings = settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightSession":
        try:
            await asyncio.wait_for(self.setup(), timeout=self.settings.browser_timeout)
        except asyncio.TimeoutError as exc:
            await self.cleanup()
            raise BrowserConnectTimeout(
                f"Browser did not start within {self.settings.browser_timeout:.1f}s"
            ) from exc
        except BaseException:
            await self.cleanup()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()

    async def setup(self) -> None:
        """Start Playwright and launch the browser."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.settings.headless,
            args=["--no-sandbox", "--disable-blink-features=AutomationControlled"],
        )
        LOGGER.debug("Browser session started")

    async def cleanup(self) -> None:
        """Close the browser; safe to call more than once."""
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                LOGGER.warning("Failed to close browser: %s", exc)
            self._browser = None
            self._context = None
            self._page = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                LOGGER.warning("Failed to stop Playwright: %s", exc)
            self._playwright = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not open")
        return self._page

    async def set_user_agent(self, user_agent: str) -> None:
        """Replace the current context with a fresh one using ``user_agent``."""
        if self._browser is None:
            raise RuntimeError("Browser session is not open")
        if self._context is not None:
            try:
                await self._context.close()
            except Exception as exc:
                LOGGER.warning("Failed to close browser context: %s", exc)
        self._context = await self._browser.new_context(user_agent=user_agent, viewport=VIEWPORT)
        self._page = await self._context.new_page()

    async def navigate(self, url: str, timeout: float) -> NavigationResult:
        """Open ``url`` and wait for the DOM to be parsed.

        Raises
        ------
        TransientNetworkError
            On navigation timeout or connection failure
        """
        try:
            response = await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise TransientNetworkError(f"Navigation timeout after {timeout:.1f}s: {url}") from exc
        except Exception as exc:
            raise TransientNetworkError(f"Navigation failed for {url}: {exc}") from exc

        if response is None:
            return NavigationResult(status=None, final_url=self.page.url)

        chain: List[str] = []
        request = response.request.redirected_from
        while request is not None:
            chain.insert(0, request.url)
            request = request.redirected_from

        return NavigationResult(status=response.status, final_url=response.url, redirect_chain=chain)

    async def settle(self, delay: float) -> None:
        """Wait for late rendering and move the mouse a bit."""
        await asyncio.sleep(delay)
        mouse = self.page.mouse
        for _ in range(3):
            await mouse.move(random.randint(50, 900), random.randint(50, 600), steps=5)

    async def has_body(self, timeout: float) -> bool:
        try:
            await self.page.wait_for_selector("body", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            return False
        return True

    async def sanitized_body(self, profile: SanitizeProfile) -> Optional[str]:
        return await self.page.evaluate(SANITIZE_SCRIPT, script_arguments(profile))
