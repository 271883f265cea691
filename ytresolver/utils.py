from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

logger = logging.getLogger(__name__)

# ========== Environment helpers ==========

def getenv_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() else default

def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# user agents contain commas, so the list separator is "|"
def getenv_list(name: str, default: Tuple[str, ...], sep: str = "|") -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    parts = [x.strip() for x in raw.split(sep)]
    return tuple(p for p in parts if p) or default

# ========== Exceptions ==========

class InputError(Exception):
    """Fatal: input catalog missing, unreadable, malformed or empty."""

class TransientResolveError(Exception):
    """Retryable per-attempt failure (timeouts, navigation errors, 429/5xx)."""

def http_status_to_exc(status: Optional[int]) -> Optional[Exception]:
    if status is None:
        return None
    if status >= 400:
        # search pages never return a meaningful 4xx; everything is worth another attempt
        return TransientResolveError(f"HTTP {status}")
    return None

# ========== Video ID helpers ==========

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_WATCH_HREF_RE = re.compile(r"(?:[?&]v=|youtu\.be/|/shorts/|/embed/)([A-Za-z0-9_-]{11})")

def is_video_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_VIDEO_ID_RE.match(value))

def extract_video_id(href: Optional[str]) -> Optional[str]:
    """
    Pull the video ID out of a watch/shorts/embed link. Relative hrefs
    ("/watch?v=...") are accepted as well.
    """
    if not href:
        return None
    try:
        qs = parse_qs(urlparse(href).query)
    except ValueError:
        qs = {}
    v = (qs.get("v") or [None])[0]
    if is_video_id(v):
        return v
    m = _WATCH_HREF_RE.search(href)
    return m.group(1) if m else None

# ========== Retry decorators ==========

def retry_async(
    max_attempts: int,
    initial_delay_ms: int,
    max_delay_ms: int,
    jitter_ms: int,
    retry_on: Tuple[type, ...] = (IOError, TimeoutError),
):
    """
    Low-level retry for a single network call inside one resolve attempt.
    Attempt-level retries belong to RetryController, not here.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(
            initial=initial_delay_ms / 1000.0,
            max=max_delay_ms / 1000.0,
            jitter=jitter_ms / 1000.0,
        ),
        retry=retry_if_exception_type(retry_on),
    )

# ========== File I/O ==========

def atomic_write_text(path: Path, data: str, encoding: str = "utf-8") -> None:
    """
    Write text atomically using a NamedTemporaryFile and os.replace on the same filesystem.
    Readers see either the previous file or the complete new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding=encoding, dir=str(path.parent), delete=False) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    try:
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise

def dump_json(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False) + "\n"

def build_search_url(template: str, query: str) -> str:
    return template.format(query=quote(query, safe=""))

def truncate(text: str, n: int) -> str:
    text = text or ""
    return text if len(text) <= n else text[:n] + "..."
