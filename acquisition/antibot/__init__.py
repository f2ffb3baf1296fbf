"""Anti-bot helpers for browser sessions.

- User-agent rotation per navigation attempt
- Attempt budget with growing backoff after blocks and transient failures
"""

from .retry import RetryBudget
from .user_agent import UserAgentPool

__all__ = [
    "RetryBudget",
    "UserAgentPool",
]
