"""
Browserless resolver backend.

Fetches the results page with httpx and reads video IDs out of the embedded
``ytInitialData`` JSON. Much cheaper than a browser, but more fragile against
consent walls, so the browser backend stays the default.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Pattern, Sequence

import httpx

from .config import Config
from .utils import TransientResolveError, build_search_url, http_status_to_exc, retry_async

logger = logging.getLogger(__name__)

# ordered: first match wins
DEFAULT_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r'"videoRenderer"\s*:\s*\{\s*"videoId"\s*:\s*"([A-Za-z0-9_-]{11})"'),
    re.compile(r'/watch\?v=([A-Za-z0-9_-]{11})'),
)

_CONSENT_HOSTS = ("consent.youtube.com", "consent.google.com")


def extract_first_video_id(html: str, patterns: Sequence[Pattern[str]] = DEFAULT_PATTERNS) -> Optional[str]:
    for pat in patterns:
        m = pat.search(html or "")
        if m:
            return m.group(1)
    return None


def httpx_client(cfg: Config, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    limits = httpx.Limits(max_keepalive_connections=cfg.max_parallel_pages, max_connections=cfg.max_parallel_pages * 2)
    timeout = httpx.Timeout(cfg.timeout_ms / 1000.0)
    headers = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": cfg.accept_language,
        "DNT": "1",
    }
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        headers=headers,
        follow_redirects=True,
        transport=transport,
    )


class StaticSession:
    def __init__(
        self,
        cfg: Config,
        client: httpx.AsyncClient,
        *,
        slot_index: int,
        patterns: Sequence[Pattern[str]] = DEFAULT_PATTERNS,
    ) -> None:
        self.cfg = cfg
        self.client = client
        self.slot_index = slot_index
        self.patterns = tuple(patterns)
        self.headers: dict[str, str] = {}

    async def configure(self, *, user_agent: str, viewport: dict[str, int]) -> None:
        # viewport has no meaning without a renderer
        self.headers = {"User-Agent": user_agent, "Referer": self.cfg.referer}

    @retry_async(2, 500, 2000, 250, retry_on=(httpx.TransportError,))
    async def _get(self, url: str) -> httpx.Response:
        return await self.client.get(url, headers=self.headers)

    async def resolve(self, query: str) -> Optional[str]:
        url = build_search_url(self.cfg.search_url_template, query)
        try:
            resp = await self._get(url)
        except httpx.HTTPError as e:
            raise TransientResolveError(f"fetch failed: {e}") from e

        exc = http_status_to_exc(resp.status_code)
        if exc:
            raise exc
        if resp.url.host in _CONSENT_HOSTS:
            raise TransientResolveError("redirected to consent page")

        return extract_first_video_id(resp.text, self.patterns)

    async def close(self) -> None:
        # the client is shared and owned by the factory
        self.headers = {}


class StaticSessionFactory:
    def __init__(self, cfg: Config, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._client = httpx_client(self.cfg, transport=self._transport)
        logger.info("Static HTTP client initialized pages=%d", self.cfg.max_parallel_pages)

    async def new_session(self, slot_index: int) -> StaticSession:
        if self._client is None:
            raise RuntimeError("StaticSessionFactory.start() must be awaited first")
        return StaticSession(self.cfg, self._client, slot_index=slot_index)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
