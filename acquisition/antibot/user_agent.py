"""User-agent rotation for browser sessions."""
from __future__ import annotations

import random
from typing import List, Optional, Sequence


class UserAgentPool:
    """Pool of desktop user-agent strings, one picked per navigation attempt."""

    DESKTOP_USER_AGENTS: List[str] = [
        # Chrome on Windows
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
        # Chrome on macOS
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
        # Chrome on Linux
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
        # Firefox
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.5; rv:127.0) Gecko/20100101 Firefox/127.0",
        # Safari
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.5 Safari/605.1.15",
        # Edge
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36 Edg/126.0.0.0",
    ]

    def __init__(self, agents: Optional[Sequence[str]] = None, *, rng: Optional[random.Random] = None) -> None:
        """Initialize user-agent pool.

        Parameters
        ----------
        agents : sequence of str, optional
            Custom agent strings (defaults to the built-in desktop set)
        rng : random.Random, optional
            Random source, injectable for deterministic tests
        """
        self.agents = list(agents) if agents else list(self.DESKTOP_USER_AGENTS)
        self._rng = rng or random.Random()

    def get_random(self) -> str:
        return self._rng.choice(self.agents)
