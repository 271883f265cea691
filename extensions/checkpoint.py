from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Optional

from components.song_loader import TaskList
from extensions.output_paths import write_songs_document

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Checkpoint writer
# ---------------------------------------------------------------------------

class CheckpointWriter:
    """
    Keeps at most one live snapshot of the whole task list at ``path``.

    The snapshot is serialized on the event loop (so it is a consistent
    view of the tasks) and written from a worker thread, so slots keep
    resolving while the disk catches up. Write errors are not swallowed:
    a run that cannot persist progress should stop.
    """

    def __init__(self, path: Path, *, every: int = 10):
        if every < 1:
            raise ValueError("checkpoint cadence must be >= 1")
        self.path = Path(path)
        self.every = every
        self.saves = 0
        self.last_index: Optional[int] = None
        self._lock = asyncio.Lock()

    def is_due(self, task_index: int) -> bool:
        return task_index % self.every == 0

    async def save(self, task_list: TaskList, *, through_index: Optional[int] = None) -> Path:
        """Persist current checkpoint to disk, replacing any previous one."""
        document = task_list.to_document()
        async with self._lock:
            await asyncio.to_thread(write_songs_document, self.path, document)
            self.saves += 1
            self.last_index = through_index
        logger.info("[checkpoint] saved %d song(s) through index %s -> %s", len(task_list), through_index, self.path)
        return self.path

    def discard(self) -> None:
        """Drop the checkpoint once the final output supersedes it."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("[checkpoint] could not remove %s: %s", self.path, e)
