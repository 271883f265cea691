from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Sequence

from ytresolver.resolver import ResolverSession, SessionFactory

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


@dataclass(slots=True)
class PoolSlot:
    idx: int
    session: ResolverSession
    processed: int = 0


class WorkerPool:
    """
    Fixed set of resolver sessions.
    - Task i always runs on slot i % size, so a slot handles its tasks strictly
      in order and a session is never shared by two attempts at once.
    - Slots run concurrently with each other as asyncio tasks.
    """

    def __init__(self, factory: SessionFactory, size: int) -> None:
        self._factory = factory
        self._size = max(1, int(size))
        self._slots: List[PoolSlot] = []
        self._started = False
        self._closed = False

    @property
    def size(self) -> int:
        return self._size

    def assign(self, task_indices: Sequence[int]) -> Dict[int, List[int]]:
        plan: Dict[int, List[int]] = {i: [] for i in range(self._size)}
        for ti in task_indices:
            plan[ti % self._size].append(ti)
        return plan

    async def open(self) -> None:
        await self._factory.start()
        self._started = True
        for i in range(self._size):
            session = await self._factory.new_session(i)
            self._slots.append(PoolSlot(idx=i, session=session))
        logger.info("[WorkerPool] started size=%d", self._size)

    async def run(
        self,
        task_indices: Sequence[int],
        worker: Callable[[PoolSlot, int], Awaitable[None]],
    ) -> None:
        """
        Drive ``worker(slot, task_index)`` for every index. Each slot walks its
        share sequentially; the first exception from any slot cancels the rest
        and propagates.
        """
        if len(self._slots) != self._size:
            raise RuntimeError("WorkerPool.open() must complete before run()")
        plan = self.assign(task_indices)

        async def _drive(slot: PoolSlot, indices: List[int]) -> None:
            for ti in indices:
                await worker(slot, ti)
                slot.processed += 1

        jobs = [
            asyncio.create_task(_drive(self._slots[s], idxs), name=f"slot-{s}")
            for s, idxs in plan.items()
            if idxs
        ]
        try:
            await asyncio.gather(*jobs)
        except BaseException:
            for j in jobs:
                j.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*jobs, return_exceptions=True)
            raise

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for s in self._slots:
            try:
                await s.session.close()
            except Exception as e:
                logger.warning("[WorkerPool] slot=%d close failed: %s", s.idx, e)
        self._slots.clear()
        if self._started:
            try:
                await self._factory.stop()
            except Exception as e:
                logger.warning("[WorkerPool] backend stop failed: %s", e)
        logger.info("[WorkerPool] stopped")
