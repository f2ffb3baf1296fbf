import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from acquisition.config import QueueSettings
from acquisition.consumer.engine import QueueConsumer
from acquisition.consumer.quota import QuotaStatus
from acquisition.errors import ConfigError


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _payload(index):
    return {"url": f"https://shop.example/p/{index}", "key": f"k{index}", "offerId": 42}


def _feed(consumer, fakes, count, start=0):
    messages = [fakes.Message(_payload(start + index), tag=start + index) for index in range(count)]
    for message in messages:
        asyncio.run(consumer.on_message(message))
    return messages


def test_batches_ack_successes(fakes):
    seen = []

    async def handler(payload):
        seen.append(payload["key"])

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=2), handler)
    messages = _feed(consumer, fakes, 3)

    assert asyncio.run(consumer.step()) is True
    assert seen == ["k0", "k1"]
    assert [m.acked for m in messages] == [True, True, False]

    assert asyncio.run(consumer.step()) is True
    assert seen == ["k0", "k1", "k2"]
    assert all(m.acked for m in messages)
    assert consumer.stats.batches == 2
    assert consumer.stats.acked == 3


def test_failed_item_is_requeued(fakes):
    async def handler(payload):
        if payload["key"] == "k1":
            raise RuntimeError("ledger unavailable")

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=3), handler)
    messages = _feed(consumer, fakes, 3)

    asyncio.run(consumer.step())

    assert messages[0].acked and messages[2].acked
    assert messages[1].nacked and messages[1].requeued is True
    assert not messages[1].acked
    assert consumer.stats.nacked == 1


def test_item_timeout_is_requeued(fakes):
    async def handler(payload):
        await asyncio.sleep(5)

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=1, item_timeout=0.01), handler)
    (message,) = _feed(consumer, fakes, 1)

    asyncio.run(consumer.step())

    assert message.nacked and message.requeued is True


def test_decode_fault_requeues_whole_batch(fakes):
    handled = []

    async def handler(payload):
        handled.append(payload)

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=2), handler)
    good = fakes.Message(_payload(0))
    bad = fakes.Message(body=b"{not json")
    asyncio.run(consumer.on_message(good))
    asyncio.run(consumer.on_message(bad))

    asyncio.run(consumer.step())

    assert handled == []
    assert good.nacked and bad.nacked
    assert not good.acked


def test_quota_attaches_credentials_and_rotates(fakes):
    clock = Clock(datetime(2024, 3, 1, 9, 0))
    keys = []

    async def handler(payload):
        keys.append(payload["api_key"])

    settings = QueueSettings(name="products", batch_size=2, daily_limit=2, credentials=["key-1", "key-2"])
    consumer = QueueConsumer(settings, handler, clock=clock)
    _feed(consumer, fakes, 6)

    assert asyncio.run(consumer.step()) is True
    assert asyncio.run(consumer.step()) is True
    assert keys == ["key-1", "key-1", "key-2", "key-2"]
    assert consumer.quota.status == QuotaStatus.ROTATED

    # Both credentials used up: nothing is dispatched until the reset.
    assert asyncio.run(consumer.step()) is False
    assert consumer.quota.is_exhausted
    assert len(consumer.buffer) == 2
    assert asyncio.run(consumer.step()) is False

    clock.now = clock.now + timedelta(days=1, minutes=1)
    assert asyncio.run(consumer.step()) is True
    assert keys[-2:] == ["key-1", "key-1"]
    assert consumer.quota.next_reset == datetime(2024, 3, 3, 9, 0)


def test_quota_never_exceeded_between_resets(fakes):
    dispatched = []

    async def handler(payload):
        dispatched.append(payload["key"])

    settings = QueueSettings(name="products", batch_size=3, daily_limit=4, credentials=["only"])
    consumer = QueueConsumer(settings, handler, clock=Clock(datetime(2024, 3, 1)))
    _feed(consumer, fakes, 10)

    for _ in range(5):
        asyncio.run(consumer.step())

    assert len(dispatched) == 3
    assert consumer.quota.consumed <= settings.daily_limit


def test_queue_without_quota_has_no_api_key(fakes):
    payloads = []

    async def handler(payload):
        payloads.append(payload)

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=1), handler)
    _feed(consumer, fakes, 1)
    asyncio.run(consumer.step())

    assert "api_key" not in payloads[0]


def test_empty_queue_logged_once(caplog):
    async def handler(payload):
        return None

    consumer = QueueConsumer(QueueSettings(name="scrape"), handler)
    caplog.set_level(logging.INFO)

    assert asyncio.run(consumer.step()) is False
    assert asyncio.run(consumer.step()) is False

    notices = [r for r in caplog.records if "Queue is empty" in r.getMessage()]
    assert len(notices) == 1


def test_run_stops_after_current_batch(fakes):
    async def handler(payload):
        return None

    delays = []
    consumer = None

    async def fake_sleep(delay):
        delays.append(delay)
        consumer.stop()

    consumer = QueueConsumer(QueueSettings(name="scrape", batch_size=2, batch_delay=20), handler, sleep=fake_sleep)
    messages = _feed(consumer, fakes, 2)

    asyncio.run(consumer.run())

    assert all(m.acked for m in messages)
    assert delays == [20]
    assert consumer.running is False


def test_invalid_quota_settings_rejected():
    async def handler(payload):
        return None

    with pytest.raises(ConfigError):
        QueueConsumer(QueueSettings(name="products", batch_size=5, daily_limit=2, credentials=["k"]), handler)
    with pytest.raises(ConfigError):
        QueueConsumer(QueueSettings(name="products", batch_size=1, daily_limit=2), handler)
