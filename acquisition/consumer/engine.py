"""Batching queue consumer with daily quotas and credential rotation."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol

import orjson

from ..config import QueueSettings
from .quota import QuotaState, QuotaStatus

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]
Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


class InboundMessage(Protocol):
    """The slice of a broker delivery the engine relies on."""

    body: bytes

    async def ack(self) -> None:
        ...

    async def nack(self, requeue: bool = True) -> None:
        ...


@dataclass
class ConsumerStats:
    """Counters reported when a consumer stops."""

    batches: int = 0
    acked: int = 0
    nacked: int = 0


class QueueConsumer:
    """Consumption loop for a single queue.

    Deliveries are buffered by :meth:`on_message` (the broker bounds the
    buffer through prefetch) and drained by :meth:`run` one joined batch at a
    time. All quota state belongs to this instance and is only mutated from
    the loop.
    """

    def __init__(
        self,
        settings: QueueSettings,
        handler: Handler,
        *,
        clock: Clock = datetime.now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize consumer.

        Parameters
        ----------
        settings : QueueSettings
            Batch size, pacing, timeout and quota for this queue
        handler : callable
            Coroutine function processing one decoded payload
        clock : callable
            Wall-clock source used for quota resets
        sleep : callable
            Coroutine used for pacing and idling
        """
        settings.validate()
        self.settings = settings
        self.handler = handler
        self._clock = clock
        self._sleep = sleep
        self.buffer: Deque[InboundMessage] = deque()
        self.quota: Optional[QuotaState] = None
        if settings.has_quota:
            self.quota = QuotaState(
                daily_limit=settings.daily_limit,
                credentials=list(settings.credentials),
            )
        self.stats = ConsumerStats()
        self.running = False
        self._empty_notice_shown = False
        self._limit_notice_shown = False

    @property
    def name(self) -> str:
        return self.settings.name

    async def on_message(self, message: InboundMessage) -> None:
        """Broker callback: buffer a delivery for the next batch."""
        self.buffer.append(message)
        self._empty_notice_shown = False
        LOGGER.debug("%s: Received message with tag %s", self.name, getattr(message, "delivery_tag", "?"))
        if self.quota is not None:
            self.quota.arm(self._clock())

    def stop(self) -> None:
        LOGGER.info("%s: Stop requested, finishing current batch", self.name)
        self.running = False

    async def run(self) -> None:
        """Run the consumption loop until :meth:`stop` is called."""
        LOGGER.info(
            "%s: Starting consumer (batch_size=%d, batch_delay=%.1fs, daily_limit=%s)",
            self.name,
            self.settings.batch_size,
            self.settings.batch_delay,
            self.settings.daily_limit,
        )
        self.running = True

        while self.running:
            try:
                dispatched = await self.step()
            except Exception as exc:
                LOGGER.error("%s: Consumer error: %s", self.name, exc, exc_info=True)
                dispatched = False

            if not self.running:
                break
            if dispatched:
                LOGGER.info("%s: Waiting %.1fs before the next batch", self.name, self.settings.batch_delay)
                await self._sleep(self.settings.batch_delay)
            else:
                await self._sleep(self.settings.poll_interval)

        self._log_stats()

    async def step(self) -> bool:
        """Run one loop iteration.

        Returns
        -------
        bool
            True if a batch was dispatched, False if the loop should idle
        """
        quota = self.quota
        if quota is not None:
            now = self._clock()
            if quota.reset_due(now):
                quota.apply_scheduled_reset(now)
                self._limit_notice_shown = False

        if not self.buffer:
            if not self._empty_notice_shown:
                LOGGER.info("%s: Queue is empty, waiting for new messages...", self.name)
                self._empty_notice_shown = True
            return False

        size = min(self.settings.batch_size, len(self.buffer))
        if quota is not None and not quota.can_consume(size):
            self._on_limit_reached(quota)
            if not quota.can_consume(size):
                return False

        batch = [self.buffer.popleft() for _ in range(size)]
        await self._process_batch(batch)
        return True

    def _on_limit_reached(self, quota: QuotaState) -> None:
        if quota.is_exhausted:
            if not self._limit_notice_shown:
                LOGGER.warning(
                    "%s: Credentials exhausted, pausing until reset at %s",
                    self.name,
                    quota.next_reset,
                )
                self._limit_notice_shown = True
            return

        LOGGER.warning(
            "%s: Daily limit of %d messages reached, switching to next credential",
            self.name,
            quota.daily_limit,
        )
        if quota.rotate() == QuotaStatus.EXHAUSTED:
            LOGGER.warning(
                "%s: Credentials exhausted, pausing until reset at %s",
                self.name,
                quota.next_reset,
            )
            self._limit_notice_shown = True

    async def _process_batch(self, batch: List[InboundMessage]) -> None:
        credential = self.quota.active_credential if self.quota is not None else None

        try:
            payloads = [self._decode(message, credential) for message in batch]
        except Exception as exc:
            LOGGER.error("%s: Error decoding batch, requeueing %d message(s): %s", self.name, len(batch), exc)
            for message in batch:
                await message.nack(requeue=True)
            self.stats.nacked += len(batch)
            return

        results = await asyncio.gather(
            *(self._run_item(payload) for payload in payloads),
            return_exceptions=True,
        )

        for message, result in zip(batch, results):
            if isinstance(result, BaseException):
                LOGGER.error(
                    "%s: Message %s failed, requeueing: %r",
                    self.name,
                    getattr(message, "delivery_tag", "?"),
                    result,
                )
                await message.nack(requeue=True)
                self.stats.nacked += 1
            else:
                await message.ack()
                self.stats.acked += 1

        self.stats.batches += 1
        if self.quota is not None:
            self.quota.record(len(batch))
            LOGGER.info(
                "%s: Processed %d message(s), daily counter: %d/%d",
                self.name,
                len(batch),
                self.quota.consumed,
                self.quota.daily_limit,
            )
        else:
            LOGGER.info("%s: Processed %d message(s)", self.name, len(batch))

    def _decode(self, message: InboundMessage, credential: Optional[str]) -> Dict[str, Any]:
        payload = orjson.loads(message.body)
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        if credential is not None:
            payload["api_key"] = credential
        return payload

    async def _run_item(self, payload: Dict[str, Any]) -> None:
        await asyncio.wait_for(self.handler(payload), timeout=self.settings.item_timeout)

    def _log_stats(self) -> None:
        LOGGER.info(
            "%s: Consumer stopped: batches=%d, acked=%d, nacked=%d",
            self.name,
            self.stats.batches,
            self.stats.acked,
            self.stats.nacked,
        )
