from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt

from components.rate_limiter import Jitterer
from components.song_loader import Task
from components.worker_pool import PoolSlot
from ytresolver.resolver import Outcome
from ytresolver.utils import truncate

logger = logging.getLogger(__name__)


@dataclass
class TaskResult:
    """What one slot reports back for one task; the coordinator applies it."""
    index: int
    video_id: Optional[str] = None
    outcomes: List[Outcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def resolved(self) -> bool:
        return self.video_id is not None

    @property
    def retries_consumed(self) -> int:
        return sum(1 for o in self.outcomes if not o.resolved)


class RetryController:
    """
    Runs up to ``max_retries`` resolve attempts for one task on one slot.

    Every attempt rotates the session's user agent, resolves, then waits
    out a jitter delay whatever the result. Resolver exceptions become
    TransientError outcomes and cost one attempt, exactly like NotFound;
    nothing raised by the resolver leaves this class.
    """

    def __init__(
        self,
        max_retries: int,
        jitterer: Jitterer,
        user_agents: Sequence[str],
        viewport: dict[str, int],
        *,
        query_suffix: str = "official",
        rng: Optional[random.Random] = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if not user_agents:
            raise ValueError("at least one user agent is required")
        self.max_retries = max_retries
        self.jitterer = jitterer
        self.user_agents = tuple(user_agents)
        self.viewport = dict(viewport)
        self.query_suffix = query_suffix
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg, jitterer: Jitterer, *, rng: Optional[random.Random] = None) -> "RetryController":
        return cls(
            cfg.max_retries,
            jitterer,
            cfg.user_agents,
            cfg.viewport,
            query_suffix=cfg.query_suffix,
            rng=rng,
        )

    async def attempt(self, task: Task, slot: PoolSlot, *, index: int = 0, total: int = 0) -> TaskResult:
        result = TaskResult(index=index)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            retry=retry_if_result(lambda o: not o.resolved),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        async for attempt in retrying:
            n = attempt.retry_state.attempt_number
            outcome = await self._attempt_once(task, slot)
            attempt.retry_state.set_result(outcome)
            result.outcomes.append(outcome)
            if outcome.resolved:
                result.video_id = outcome.video_id
            else:
                logger.warning(
                    "[%d/%d] attempt %d/%d %s for: %s",
                    index + 1, total, n, self.max_retries, outcome.kind.value, truncate(task.title, 30),
                )
        return result

    async def _attempt_once(self, task: Task, slot: PoolSlot) -> Outcome:
        ua = self._rng.choice(self.user_agents)
        try:
            await slot.session.configure(user_agent=ua, viewport=self.viewport)
            vid = await slot.session.resolve(task.query(self.query_suffix))
        except Exception as e:
            logger.debug("slot=%d resolver error: %s", slot.idx, e)
            outcome = Outcome.transient(e)
        else:
            outcome = Outcome.found(str(vid)) if vid else Outcome.not_found()
        await self.jitterer.delay()
        return outcome
