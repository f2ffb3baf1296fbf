"""HTTP client for the AI extraction service."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, RetryError, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config import ExtractionSettings
from ..errors import ExtractionError, ExtractionRemoteFault

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "Failed to fetch product data after maximum attempts."


class ExtractionClient:
    """Send sanitized page content to the extraction service.

    A 500 answer is retried up to ``settings.max_attempts`` times with a fixed
    delay; any other non-200 answer fails immediately.
    """

    def __init__(
        self,
        settings: ExtractionSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout), transport=transport)

    async def __aenter__(self) -> "ExtractionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def extract(self, content: str, url: str, api_key: str, model: Optional[str] = None) -> Dict[str, Any]:
        """Return the ``json_data`` object extracted from ``content``.

        Raises
        ------
        ExtractionRemoteFault
            The service kept answering 500 until the attempt ceiling
        ExtractionError
            Any other non-200 answer, transport failure or malformed body
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_attempts),
            wait=wait_fixed(self.settings.retry_delay),
            retry=retry_if_exception_type(ExtractionRemoteFault),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        )
        try:
            return await retrying(self._post, content, url, api_key, model or self.settings.model)
        except RetryError as exc:
            raise ExtractionRemoteFault(MAX_ATTEMPTS_MESSAGE, status=500) from exc

    async def _post(self, content: str, url: str, api_key: str, model: str) -> Dict[str, Any]:
        files = {
            "content": (None, content),
            "url": (None, url),
            "api_key": (None, api_key),
        }
        try:
            response = await self._client.post(self.settings.api_url, params={"model": model}, files=files)
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Extraction request failed: {exc}") from exc

        if response.status_code == 500:
            LOGGER.error("Extraction service answered 500 for %s", url)
            raise ExtractionRemoteFault("Extraction service answered 500", status=500)
        if response.status_code != 200:
            raise ExtractionError(
                f"Extraction service answered {response.status_code}",
                status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ExtractionError("Extraction response is not valid JSON", status=200) from exc

        data = body.get("json_data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ExtractionError("Extraction response carries no json_data", status=200)

        LOGGER.debug("Extracted %d field(s) for %s", len(data), url)
        return data
