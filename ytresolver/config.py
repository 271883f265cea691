from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Tuple
from .utils import getenv_bool, getenv_int, getenv_str, getenv_list

# ---------- Project Paths ----------
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
LOG_DIR: Path = PROJECT_ROOT / "logs"
LOG_FILE: Path = LOG_DIR / "resolver.log"

DEFAULT_USER_AGENTS: Tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
)

# "sp" filter restricts results to videos only
SEARCH_URL_TEMPLATE = "https://www.youtube.com/results?search_query={query}&sp=EgIQAQ%253D%253D"


# ---------- Config dataclass ----------
@dataclass(frozen=True)
class Config:
    # Paths
    input_file: Path
    output_file: Path
    log_file: Path
    checkpoint_suffix: str

    # Retry / pacing
    max_retries: int
    request_delay_min_ms: int
    request_delay_max_ms: int
    checkpoint_every: int

    # Timeouts (enforced inside the resolver backends)
    timeout_ms: int
    selector_timeout_ms: int

    # Pool
    max_parallel_pages: int

    # Session identity
    user_agents: Tuple[str, ...]
    viewport_width: int
    viewport_height: int
    accept_language: str
    referer: str

    # Resolver backend
    backend: Literal["browser", "static"]
    search_url_template: str
    query_suffix: str
    headless: bool
    proxy_server: str | None
    block_heavy_resources: bool

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}


# ---------- Loader ----------
def load_config() -> Config:

    delay_min = getenv_int("YTR_DELAY_MIN_MS", 3000, 0, 600_000)
    delay_max = getenv_int("YTR_DELAY_MAX_MS", 7000, 0, 600_000)

    backend = getenv_str("YTR_BACKEND", "browser").lower()
    if backend not in ("browser", "static"):
        backend = "browser"

    cfg = Config(
        input_file=Path(getenv_str("YTR_INPUT_FILE", "songs.json")),
        output_file=Path(getenv_str("YTR_OUTPUT_FILE", "songs_with_ids.json")),
        log_file=Path(getenv_str("YTR_LOG_FILE", str(LOG_FILE))),
        checkpoint_suffix=".tmp",

        max_retries=getenv_int("YTR_MAX_RETRIES", 2, 1, 10),
        # Long, randomized gaps keep the search endpoint from flagging us.
        request_delay_min_ms=min(delay_min, delay_max),
        request_delay_max_ms=max(delay_min, delay_max),
        checkpoint_every=getenv_int("YTR_CHECKPOINT_EVERY", 10, 1, 10_000),

        timeout_ms=getenv_int("YTR_TIMEOUT_MS", 40000, 1000, 300_000),
        selector_timeout_ms=getenv_int("YTR_SELECTOR_TIMEOUT_MS", 15000, 500, 120_000),

        # Two pages is the stable ceiling before the results page starts throttling.
        max_parallel_pages=getenv_int("YTR_MAX_PARALLEL_PAGES", 2, 1, 16),

        user_agents=getenv_list("YTR_USER_AGENTS", DEFAULT_USER_AGENTS),
        viewport_width=1920,
        viewport_height=1080,
        accept_language="en-US,en;q=0.9",
        referer="https://www.google.com/",

        backend=backend,
        search_url_template=SEARCH_URL_TEMPLATE,
        query_suffix=getenv_str("YTR_QUERY_SUFFIX", "official"),
        headless=getenv_bool("YTR_HEADLESS", True),
        proxy_server=getenv_str("YTR_PROXY_SERVER", "") or None,
        block_heavy_resources=getenv_bool("YTR_BLOCK_HEAVY_RESOURCES", True),
    )
    return cfg
