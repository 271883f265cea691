from __future__ import annotations
from pathlib import Path
from typing import Any, Dict

from ytresolver.utils import atomic_write_text, dump_json

CHECKPOINT_SUFFIX = ".tmp"


def checkpoint_path_for(output_path: Path, suffix: str = CHECKPOINT_SUFFIX) -> Path:
    """
    songs_with_ids.json -> songs_with_ids.json.tmp

    Kept next to the output (same filesystem) but never the same file, so a
    crash mid-run cannot clobber the last good output.
    """
    output_path = Path(output_path)
    return output_path.with_name(output_path.name + suffix)


def write_songs_document(path: Path, document: Dict[str, Any], *, encoding: str = "utf-8") -> Path:
    """Serialize a songs document and swap it into place atomically."""
    path = Path(path)
    atomic_write_text(path, dump_json(document), encoding=encoding)
    return path
