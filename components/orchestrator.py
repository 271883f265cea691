from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from components.rate_limiter import Jitterer
from components.retry_controller import RetryController, TaskResult
from components.song_loader import TaskList, load_songs
from components.stats import RunStats, StatsSnapshot
from components.worker_pool import PoolSlot, WorkerPool
from extensions.checkpoint import CheckpointWriter
from extensions.logging import LoggingExtension
from extensions.output_paths import checkpoint_path_for, write_songs_document
from ytresolver.config import Config
from ytresolver.resolver import SessionFactory, build_session_factory
from ytresolver.utils import InputError, truncate

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    INIT = "init"
    RESOLVING = "resolving"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RunReport:
    state: RunState
    stats: StatsSnapshot
    total: int = 0
    output_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE


class BatchOrchestrator:
    """
    Drives one run: INIT -> RESOLVING -> FINALIZING -> DONE, or INIT -> FAILED
    when the input cannot be loaded.

    Slots never touch tasks or stats directly. Each slot pushes a TaskResult
    onto a queue; a single coordinator applies it, updates the counters and
    writes checkpoints. A checkpoint for cadence index k is written once
    every task with index <= k has settled.
    """

    def __init__(
        self,
        cfg: Config,
        *,
        session_factory: Optional[SessionFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        resume: bool = False,
    ) -> None:
        self.cfg = cfg
        self.resume = resume
        self.state = RunState.INIT
        self.stats = RunStats()
        self.tasks: Optional[TaskList] = None
        self.checkpoint = CheckpointWriter(
            checkpoint_path_for(cfg.output_file, cfg.checkpoint_suffix),
            every=cfg.checkpoint_every,
        )
        self._factory = session_factory
        self._rng = rng or random.Random()
        self._jitter = Jitterer.from_config(cfg, sleep=sleep, rng=self._rng)
        self._controller = RetryController.from_config(cfg, self._jitter, rng=self._rng)
        self._pool: Optional[WorkerPool] = None

    # ---------------- Public API ----------------

    async def run(self) -> RunReport:
        self.stats.reset()
        self.state = RunState.INIT
        try:
            try:
                self.tasks = self._load()
            except InputError as e:
                self.state = RunState.FAILED
                logger.error("Fatal: %s", e)
                return RunReport(RunState.FAILED, self.stats.snapshot(), error=str(e))

            total = len(self.tasks)
            logger.info(
                "Loaded %d song(s) | slots=%d retries=%d delay=%d-%dms",
                total, self.cfg.max_parallel_pages, self.cfg.max_retries,
                self.cfg.request_delay_min_ms, self.cfg.request_delay_max_ms,
            )

            self._pool = WorkerPool(self._factory or build_session_factory(self.cfg), self.cfg.max_parallel_pages)
            try:
                await self._pool.open()
            except Exception as e:
                # still INIT: nothing resolved, nothing written
                self.state = RunState.FAILED
                logger.exception("Fatal: could not start resolver sessions")
                return RunReport(RunState.FAILED, self.stats.snapshot(), total=total, error=str(e))

            self.state = RunState.RESOLVING
            await self._resolve_all(self.tasks)

            self.state = RunState.FINALIZING
            await self._close_pool()
            out = write_songs_document(self.cfg.output_file, self.tasks.to_document())
            self.checkpoint.discard()

            self.state = RunState.DONE
            snap = self.stats.snapshot()
            self._log_summary(snap)
            return RunReport(RunState.DONE, snap, total=total, output_path=out)
        except BaseException:
            self.state = RunState.FAILED
            raise
        finally:
            await self._close_pool()

    # ---------------- Phases ----------------

    def _load(self) -> TaskList:
        if self.resume and self.checkpoint.path.is_file():
            logger.info("Resuming from checkpoint %s", self.checkpoint.path)
            return load_songs(self.checkpoint.path)
        return load_songs(self.cfg.input_file)

    async def _resolve_all(self, tasks: TaskList) -> None:
        total = len(tasks)
        queue: asyncio.Queue[TaskResult] = asyncio.Queue()
        pending = []
        for i, task in enumerate(tasks):
            if task.is_resolved:
                queue.put_nowait(TaskResult(index=i, skipped=True))
            else:
                pending.append(i)

        async def _worker(slot: PoolSlot, index: int) -> None:
            token = LoggingExtension.set_slot_context(slot.idx)
            try:
                result = await self._controller.attempt(tasks[index], slot, index=index, total=total)
            finally:
                LoggingExtension.reset_slot_context(token)
            await queue.put(result)

        pool_job = asyncio.create_task(self._pool.run(pending, _worker), name="pool")
        coordinator = asyncio.create_task(self._coordinate(tasks, queue), name="coordinator")
        jobs = (pool_job, coordinator)
        try:
            # a failed checkpoint write must stop the slots, not wait for them
            done, _ = await asyncio.wait(jobs, return_when=asyncio.FIRST_EXCEPTION)
            for job in done:
                if not job.cancelled() and job.exception() is not None:
                    raise job.exception()
            await pool_job
            await coordinator
        finally:
            for job in jobs:
                if not job.done():
                    job.cancel()
            await asyncio.gather(*jobs, return_exceptions=True)

    async def _coordinate(self, tasks: TaskList, queue: "asyncio.Queue[TaskResult]") -> None:
        total = len(tasks)
        settled = [False] * total
        watermark = 0  # every index below this has settled
        next_checkpoint = 0

        for _ in range(total):
            result = await queue.get()
            self._apply(tasks, result, total)
            settled[result.index] = True
            while watermark < total and settled[watermark]:
                watermark += 1
            while next_checkpoint < watermark:
                if self.checkpoint.is_due(next_checkpoint):
                    await self.checkpoint.save(tasks, through_index=next_checkpoint)
                next_checkpoint += 1

    def _apply(self, tasks: TaskList, result: TaskResult, total: int) -> None:
        task = tasks[result.index]
        label = f"[{result.index + 1}/{total}] {truncate(task.title, 30)} - {truncate(task.artist, 20)}"
        if result.skipped:
            self.stats.record_skipped()
            logger.debug("%s: already resolved (%s), skipped", label, task.resolved_id)
            return

        self.stats.record_retries(result.retries_consumed)
        if result.resolved:
            task.mark_resolved(result.video_id)
            self.stats.record_resolved()
            logger.info("%s: %s", label, result.video_id)
        else:
            task.mark_failed()
            self.stats.record_failed()
            logger.error("%s: no video after %d attempt(s)", label, len(result.outcomes))

    async def _close_pool(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def _log_summary(self, snap: StatsSnapshot) -> None:
        logger.info("Final results:")
        logger.info("  resolved: %d", snap.resolved)
        logger.info("  failed:   %d", snap.failed)
        logger.info("  retries:  %d", snap.retries_consumed)
        logger.info("  skipped:  %d", snap.skipped)
        logger.info("Output written to %s", self.cfg.output_file)
