from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional
from contextvars import ContextVar, Token

# Per-task context: which pool slot is running right now?
_CURRENT_SLOT: ContextVar[Optional[int]] = ContextVar("_CURRENT_SLOT", default=None)


class _SlotFilter(logging.Filter):
    """
    Stamp every record with the pool slot of the asyncio task that emitted it,
    so interleaved output from parallel slots stays attributable.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        slot = _CURRENT_SLOT.get()
        record.slot = f"s{slot}" if slot is not None else "--"
        return True


class LoggingExtension:
    def __init__(
        self,
        log_file: Optional[Path] = None,
        *,
        level: int = logging.INFO,
        file_level: Optional[int] = None,  # default to level if None
    ) -> None:
        self.log_file = log_file
        self.level = level
        self.file_level = file_level if file_level is not None else level
        self._handlers: list[logging.Handler] = []

        self._install_console(self.level)
        if log_file is not None:
            self._install_file(log_file, self.file_level)

        # Make root permissive; rely on handler levels to filter.
        logging.getLogger().setLevel(logging.DEBUG)

    # ---------------- Handlers ----------------

    def _install_console(self, level: int) -> None:
        root = logging.getLogger()
        # Remove any default handlers (e.g., from basicConfig)
        for h in list(root.handlers):
            root.removeHandler(h)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.addFilter(_SlotFilter())
        ch.setFormatter(logging.Formatter("%(levelname)s: [%(slot)s] %(message)s"))
        root.addHandler(ch)
        self._handlers.append(ch)

    def _install_file(self, log_file: Path, level: int) -> None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        fh.setLevel(level)
        fh.addFilter(_SlotFilter())
        fh.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(slot)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logging.getLogger().addHandler(fh)
        self._handlers.append(fh)

    # ---------------- Context helpers ----------------

    @staticmethod
    def set_slot_context(slot_index: int) -> Token:
        """
        Mark the current asyncio task as running on ``slot_index``.
        Returns a token you must reset when done.
        """
        return _CURRENT_SLOT.set(int(slot_index))

    @staticmethod
    def reset_slot_context(token: Token) -> None:
        try:
            _CURRENT_SLOT.reset(token)
        except ValueError:
            # token created in a different context (task already gone)
            pass

    # ---------------- Cleanup ----------------

    def close(self) -> None:
        root = logging.getLogger()
        for h in self._handlers:
            root.removeHandler(h)
            h.flush()
            h.close()
        self._handlers.clear()
