from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ytresolver.utils import InputError

logger = logging.getLogger(__name__)

ID_KEY = "youtubeId"
FAILED_KEY = "failed"


@dataclass
class Task:
    """
    One song to resolve. ``raw`` keeps every field from the input in its
    original order so the output round-trips unknown keys untouched.

    ``resolved_id`` holds the input's ``youtubeId`` as read (any truthy
    value counts as already resolved) until this run records an outcome.
    """
    title: str
    artist: str
    raw: Dict[str, Any] = field(default_factory=dict)
    resolved_id: Any = None
    failed: bool = False
    touched: bool = field(default=False, repr=False)

    def query(self, suffix: str = "official") -> str:
        parts = [self.title.strip(), self.artist.strip(), (suffix or "").strip()]
        return " ".join(p for p in parts if p)

    @property
    def is_resolved(self) -> bool:
        return bool(self.resolved_id)

    def mark_resolved(self, video_id: str) -> None:
        self.resolved_id = video_id
        self.failed = False
        self.touched = True

    def mark_failed(self) -> None:
        self.failed = True
        self.touched = True

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.raw)
        if not self.touched:
            # skipped or not reached yet: written back exactly as read
            return out
        if self.is_resolved:
            out[ID_KEY] = self.resolved_id
            out.pop(FAILED_KEY, None)
        else:
            out[FAILED_KEY] = True
        return out

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Task":
        return cls(
            title=str(row.get("title") or ""),
            artist=str(row.get("artist") or ""),
            raw=dict(row),
            resolved_id=row.get(ID_KEY),
            failed=bool(row.get(FAILED_KEY, False)),
        )


@dataclass
class TaskList:
    """Ordered songs plus any other top-level keys of the source document."""
    tasks: List[Task]
    extra: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks)

    def __getitem__(self, idx: int) -> Task:
        return self.tasks[idx]

    def to_document(self) -> Dict[str, Any]:
        doc = dict(self.extra)
        doc["songs"] = [t.to_dict() for t in self.tasks]
        return doc


def parse_songs_document(data: Any, *, source: str = "<input>") -> TaskList:
    if not isinstance(data, dict):
        raise InputError(f"{source}: expected a JSON object with a 'songs' array")
    songs = data.get("songs")
    if not isinstance(songs, list):
        raise InputError(f"{source}: missing 'songs' array")
    if not songs:
        raise InputError(f"{source}: file has no songs")

    tasks: List[Task] = []
    for i, row in enumerate(songs):
        if not isinstance(row, dict):
            raise InputError(f"{source}: songs[{i}] is not an object")
        if not str(row.get("title") or "").strip():
            logger.warning("%s: songs[%d] has no title; query will use artist only", source, i)
        tasks.append(Task.from_dict(row))

    extra = {k: v for k, v in data.items() if k != "songs"}
    return TaskList(tasks=tasks, extra=extra)


def load_songs(path: Path, *, encoding: str = "utf-8") -> TaskList:
    """
    Load the song catalog. Every way this can go wrong (missing file,
    unreadable bytes, bad JSON, empty list) is reported as InputError so
    the run aborts before any browser work.
    """
    path = Path(path)
    if not path.is_file():
        raise InputError(f"input file not found: {path}")
    try:
        text = path.read_text(encoding=encoding)
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"cannot read {path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputError(f"{path} is not valid JSON: {e}") from e
    return parse_songs_document(data, source=str(path))
