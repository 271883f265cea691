from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Jitterer:
    """
    Uniform random pause in [min_ms, max_ms], drawn fresh on every call.
    Applied after every resolve attempt, successful or not, so request
    timing never settles into a detectable rhythm.
    """

    def __init__(
        self,
        min_ms: int,
        max_ms: int,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if min_ms < 0 or max_ms < min_ms:
            raise ValueError(f"invalid delay bounds: min={min_ms} max={max_ms}")
        self.min_ms = min_ms
        self.max_ms = max_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg, **kwargs) -> "Jitterer":
        return cls(cfg.request_delay_min_ms, cfg.request_delay_max_ms, **kwargs)

    def sample_ms(self) -> float:
        return self._rng.uniform(self.min_ms, self.max_ms)

    async def delay(self) -> float:
        ms = self.sample_ms()
        logger.debug("sleeping %.0f ms", ms)
        await self._sleep(ms / 1000.0)
        return ms
