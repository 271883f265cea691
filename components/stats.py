from __future__ import annotations

from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class StatsSnapshot:
    resolved: int
    failed: int
    retries_consumed: int
    skipped: int

    @property
    def total_terminal(self) -> int:
        return self.resolved + self.failed + self.skipped

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RunStats:
    """
    Outcome counters for one run. Only ever incremented, and only by the
    orchestrator's coordinator, so no locking is needed.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._resolved = 0
        self._failed = 0
        self._retries = 0
        self._skipped = 0

    def record_resolved(self) -> None:
        self._resolved += 1

    def record_failed(self) -> None:
        self._failed += 1

    def record_skipped(self) -> None:
        self._skipped += 1

    def record_retries(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError("retry count cannot be negative")
        self._retries += n

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            resolved=self._resolved,
            failed=self._failed,
            retries_consumed=self._retries,
            skipped=self._skipped,
        )
