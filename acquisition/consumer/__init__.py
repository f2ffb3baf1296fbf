"""Multi-queue consumption engine.

- Per-queue batching with broker prefetch
- Daily quotas with credential rotation
- Acknowledge on success, requeue on failure or timeout
"""

from .broker import Broker, Publisher
from .engine import ConsumerStats, QueueConsumer
from .producer import enqueue_items, load_articles
from .quota import QuotaState, QuotaStatus, next_reset_time

__all__ = [
    "Broker",
    "Publisher",
    "ConsumerStats",
    "QueueConsumer",
    "enqueue_items",
    "load_articles",
    "QuotaState",
    "QuotaStatus",
    "next_reset_time",
]
