"""Randomised fixed-interval delay applied between processed entries."""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class RatePolicy:
    """Sleep a uniformly random time in ``[min_delay_ms, max_delay_ms]``.

    The policy is not adaptive: the same interval applies after successes and
    failures alike.
    """

    def __init__(
        self,
        min_delay_ms: int = 2000,
        max_delay_ms: int = 4000,
        rng: Optional[random.Random] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        if min_delay_ms < 0 or max_delay_ms < min_delay_ms:
            raise ValueError(f"invalid delay interval [{min_delay_ms}, {max_delay_ms}] ms")
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, **kwargs) -> "RatePolicy":
        return cls(config.min_delay_ms, config.max_delay_ms, **kwargs)

    def next_delay(self) -> float:
        """Next delay in seconds."""
        return self._rng.uniform(self.min_delay_ms, self.max_delay_ms) / 1000.0

    async def wait(self) -> float:
        delay = self.next_delay()
        logger.debug(f"⏳ Sleeping {delay:.2f}s before next entry")
        await self._sleep(delay)
        return delay
