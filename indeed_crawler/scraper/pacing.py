"""Indeed Crawler — Pacing Controller.

Sleeps a randomized delay before every fetch. Listing and detail pages
have independent [min, max] ranges; each call draws a fresh value.
Backoff after a challenge waits a multiple of the normal draw.

There is one fetch in flight per run, so the delay alone sets the
request rate.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional

from indeed_crawler.config import CrawlerConfig
from indeed_crawler.scraper.state import PageKind
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class PacingController:
    """Randomized per-request delay, independent per page kind.

    Attributes:
        listing_range: (min, max) seconds before listing page fetches.
        detail_range: (min, max) seconds before detail/company fetches.
        backoff_multiplier: Factor applied to the draw for challenge backoff.
        total_slept: Seconds slept so far (for telemetry).
    """

    def __init__(
        self,
        listing_range: tuple[float, float],
        detail_range: tuple[float, float],
        backoff_multiplier: float = 2.5,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        for name, (low, high) in (("listing", listing_range), ("detail", detail_range)):
            if low < 0 or high < low:
                raise ValueError(f"Invalid {name} delay range: ({low}, {high})")
        self.listing_range = listing_range
        self.detail_range = detail_range
        self.backoff_multiplier = backoff_multiplier
        self.total_slept = 0.0
        self._sleep = sleep
        self._rng = rng or random.Random()

        logger.debug(
            "Pacing initialized: listing %.1f–%.1fs, detail %.1f–%.1fs, backoff ×%.1f",
            listing_range[0], listing_range[1],
            detail_range[0], detail_range[1],
            backoff_multiplier,
        )

    @classmethod
    def from_config(
        cls,
        config: CrawlerConfig,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> "PacingController":
        return cls(
            listing_range=config.listing_delay_seconds,
            detail_range=config.detail_delay_seconds,
            backoff_multiplier=config.challenge_backoff_multiplier,
            sleep=sleep,
            rng=rng,
        )

    def window_for(self, kind: PageKind) -> tuple[float, float]:
        """The delay range applied to a page kind."""
        return self.listing_range if kind is PageKind.LISTING else self.detail_range

    def draw(self, kind: PageKind) -> float:
        """Draw one delay for a page kind."""
        low, high = self.window_for(kind)
        return self._rng.uniform(low, high)

    async def wait(self, kind: PageKind) -> float:
        """Sleep the normal pre-request delay.

        Returns:
            Seconds slept.
        """
        delay = self.draw(kind)
        logger.debug("Pacing %s request: sleeping %.2fs", kind.value, delay)
        await self._pause(delay)
        return delay

    async def backoff(self, kind: PageKind) -> float:
        """Sleep the longer post-challenge delay.

        Returns:
            Seconds slept.
        """
        delay = self.draw(kind) * self.backoff_multiplier
        logger.info("Challenge backoff (%s): sleeping %.1fs", kind.value, delay)
        await self._pause(delay)
        return delay

    async def _pause(self, delay: float) -> None:
        self.total_slept += delay
        if delay > 0:
            await self._sleep(delay)

    def __repr__(self) -> str:
        return (
            f"PacingController(listing={self.listing_range}, "
            f"detail={self.detail_range}, backoff=×{self.backoff_multiplier})"
        )
