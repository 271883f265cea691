from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of a single resolution attempt."""

    kind: OutcomeKind
    video_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.kind is OutcomeKind.RESOLVED

    @classmethod
    def found(cls, video_id: str) -> "Outcome":
        return cls(OutcomeKind.RESOLVED, video_id=video_id)

    @classmethod
    def not_found(cls) -> "Outcome":
        return cls(OutcomeKind.NOT_FOUND)

    @classmethod
    def transient(cls, error: BaseException | str) -> "Outcome":
        if isinstance(error, BaseException):
            error = f"{type(error).__name__}: {error}"
        return cls(OutcomeKind.TRANSIENT_ERROR, error=error)


@runtime_checkable
class ResolverSession(Protocol):
    """
    One resolver session bound to a pool slot. Never used by two attempts at once.

    ``resolve`` returns a best-effort video ID or None; it may raise on
    transient failures (timeouts, navigation errors), which the retry
    controller turns into a TransientError outcome.
    """

    async def configure(self, *, user_agent: str, viewport: dict[str, int]) -> None: ...

    async def resolve(self, query: str) -> Optional[str]: ...

    async def close(self) -> None: ...


class SessionFactory(Protocol):
    """Creates the per-slot sessions and owns any shared backend (browser, HTTP pool)."""

    async def start(self) -> None: ...

    async def new_session(self, slot_index: int) -> ResolverSession: ...

    async def stop(self) -> None: ...


def build_session_factory(cfg) -> SessionFactory:
    if cfg.backend == "static":
        from .static import StaticSessionFactory
        return StaticSessionFactory(cfg)
    from .browser import BrowserSessionFactory
    return BrowserSessionFactory(cfg)
