"""Indeed Crawler — Egress Identities.

An identity is the proxy + user agent + session a request goes out
with. The crawler never builds one itself: it asks the pool for a fresh
identity when a page comes back challenged.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from typing import Optional

from indeed_crawler.config import CrawlerConfig
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who a request appears to come from."""

    user_agent: str
    proxy_url: Optional[str] = None
    session_id: str = ""

    def describe(self) -> str:
        """Log-safe summary (proxy credentials are not included)."""
        proxy = "direct"
        if self.proxy_url:
            proxy = self.proxy_url.rsplit("@", 1)[-1]
        return f"session={self.session_id} proxy={proxy}"


class IdentityPool:
    """Rotates through configured proxies and user agents.

    Proxies are used round-robin from a random starting point; each new
    identity also gets a new user agent (different from the previous one
    when more than one is configured) and a new session id.

    Attributes:
        rotations: Number of identities handed out after the first.
    """

    def __init__(
        self,
        user_agents: list[str],
        proxy_urls: Optional[list[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not user_agents:
            raise ValueError("At least one user agent is required")
        self._user_agents = list(user_agents)
        self._proxies = list(proxy_urls or [])
        self._rng = rng or random.Random()
        self._proxy_index = self._rng.randrange(len(self._proxies)) if self._proxies else 0
        self._current: Optional[Identity] = None
        self.rotations = 0

    @classmethod
    def from_config(cls, config: CrawlerConfig, rng: Optional[random.Random] = None) -> "IdentityPool":
        return cls(config.user_agents, config.proxy_urls, rng=rng)

    def current(self) -> Identity:
        """The identity in use, creating the first one lazily."""
        if self._current is None:
            self._current = self._make_identity()
        return self._current

    def next_identity(self) -> Identity:
        """Switch to and return a fresh identity."""
        previous = self.current()
        if self._proxies:
            self._proxy_index = (self._proxy_index + 1) % len(self._proxies)
        self._current = self._make_identity(avoid_agent=previous.user_agent)
        self.rotations += 1
        logger.info("Rotated identity → %s", self._current.describe())
        return self._current

    def _make_identity(self, avoid_agent: Optional[str] = None) -> Identity:
        candidates = [ua for ua in self._user_agents if ua != avoid_agent] or self._user_agents
        proxy = self._proxies[self._proxy_index] if self._proxies else None
        return Identity(
            user_agent=self._rng.choice(candidates),
            proxy_url=proxy,
            session_id=uuid.UUID(int=self._rng.getrandbits(128)).hex[:12],
        )
