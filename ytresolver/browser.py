from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright, Page, Error as PWError

from .config import Config
from .utils import TransientResolveError, build_search_url, extract_video_id, http_status_to_exc

logger = logging.getLogger(__name__)

# Either renderer means the result list has hydrated
RESULTS_SELECTOR = "ytd-video-renderer, ytd-rich-item-renderer"


def _browser_args(cfg: Config) -> list[str]:
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-web-security",
        "--disable-features=IsolateOrigins,site-per-process",
        # keep renderer light
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-sync",
        "--mute-audio",
        "--no-default-browser-check",
        "--no-first-run",
        # hide the automation flag from navigator.webdriver
        "--disable-blink-features=AutomationControlled",
    ]


# ---------------------------
# Result extraction strategies
# ---------------------------

@dataclass(frozen=True)
class SelectorStrategy:
    """
    One way of locating a video link on the results page. Strategies are
    tried in order; the first one yielding an ID wins. The results page
    markup changes often, so these are plain data and easy to swap.
    """
    name: str
    selector: str
    first_only: bool = False

    async def extract(self, page: Page) -> Optional[str]:
        hrefs = await page.eval_on_selector_all(
            self.selector,
            "els => els.map(e => e.href || e.getAttribute('href'))",
        )
        if self.first_only:
            hrefs = (hrefs or [])[:1]
        for href in hrefs or []:
            vid = extract_video_id(href)
            if vid:
                return vid
        return None


DEFAULT_STRATEGIES: Tuple[SelectorStrategy, ...] = (
    SelectorStrategy(
        "first_result",
        "ytd-video-renderer a#video-title, ytd-rich-item-renderer a#video-title",
        first_only=True,
    ),
    SelectorStrategy("thumbnail", "ytd-thumbnail a"),
)


# ---------------------------
# Browser lifecycle
# ---------------------------

async def init_browser(cfg: Config) -> Tuple[Playwright, Browser]:
    proxy = {"server": cfg.proxy_server} if getattr(cfg, "proxy_server", None) else None

    pw = await async_playwright().start()
    browser = await pw.chromium.launch(
        headless=getattr(cfg, "headless", True),
        args=_browser_args(cfg),
        proxy=proxy,
    )
    logger.info(
        "Browser initialized headless=%s proxy=%s pages=%d",
        getattr(cfg, "headless", True),
        bool(proxy),
        cfg.max_parallel_pages,
    )
    return pw, browser


async def shutdown_browser(pw: Playwright, browser: Browser) -> None:
    try:
        await browser.close()
    except Exception as e:
        logger.warning("Error while closing browser: %s", e)

    try:
        await pw.stop()
    except Exception as e:
        logger.warning("Error while stopping Playwright: %s", e)


async def _install_request_blocking(context: BrowserContext) -> None:
    async def route_handler(route, request):
        rtype = request.resource_type
        if rtype in {"image", "media", "font"}:
            return await route.abort()
        return await route.continue_()
    await context.route("**/*", route_handler)


async def try_close(obj, timeout_ms: int = 1500) -> None:
    """
    Bounded-time close for pages/contexts so a wedged renderer cannot
    hang pool teardown.
    """
    if obj is None:
        return
    try:
        await asyncio.wait_for(obj.close(), timeout=max(0.1, timeout_ms / 1000.0))
    except (asyncio.TimeoutError, PWError) as e:
        logger.debug("close of %s did not complete cleanly: %s", type(obj).__name__, e)


# ---------------------------
# Sessions
# ---------------------------

class BrowserSession:
    """One browser context + page bound to a pool slot."""

    def __init__(
        self,
        cfg: Config,
        context: BrowserContext,
        page: Page,
        *,
        slot_index: int,
        strategies: Sequence[SelectorStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.cfg = cfg
        self.context = context
        self.page = page
        self.slot_index = slot_index
        self.strategies = tuple(strategies)

    async def configure(self, *, user_agent: str, viewport: dict[str, int]) -> None:
        # header only: navigator.userAgent keeps the context's launch value
        await self.page.set_extra_http_headers({
            "User-Agent": user_agent,
            "Accept-Language": self.cfg.accept_language,
            "Referer": self.cfg.referer,
        })
        await self.page.set_viewport_size(viewport)

    async def resolve(self, query: str) -> Optional[str]:
        url = build_search_url(self.cfg.search_url_template, query)
        try:
            resp = await self.page.goto(url, wait_until="networkidle", timeout=self.cfg.timeout_ms)
        except PWError as e:
            raise TransientResolveError(f"navigation failed: {e}") from e

        exc = http_status_to_exc(resp.status if resp else None)
        if exc:
            raise exc

        try:
            await self.page.wait_for_selector(RESULTS_SELECTOR, timeout=self.cfg.selector_timeout_ms)
        except PWError as e:
            raise TransientResolveError(f"results did not render: {e}") from e

        for strategy in self.strategies:
            vid = await strategy.extract(self.page)
            if vid:
                logger.debug("slot=%d strategy=%s matched %s", self.slot_index, strategy.name, vid)
                return vid
        return None

    async def close(self) -> None:
        await try_close(self.page)
        await try_close(self.context)


class BrowserSessionFactory:
    """Launches one Chromium and hands out one isolated context per slot."""

    def __init__(self, cfg: Config, *, strategies: Sequence[SelectorStrategy] = DEFAULT_STRATEGIES) -> None:
        self.cfg = cfg
        self.strategies = tuple(strategies)
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        self._pw, self._browser = await init_browser(self.cfg)

    async def new_session(self, slot_index: int) -> BrowserSession:
        if self._browser is None:
            raise RuntimeError("BrowserSessionFactory.start() must be awaited first")
        context = await self._browser.new_context(
            viewport=self.cfg.viewport,
            java_script_enabled=True,
            extra_http_headers={"Accept-Language": self.cfg.accept_language},
        )
        context.set_default_timeout(self.cfg.timeout_ms)
        context.set_default_navigation_timeout(self.cfg.timeout_ms)
        if self.cfg.block_heavy_resources:
            await _install_request_blocking(context)
        page = await context.new_page()
        return BrowserSession(self.cfg, context, page, slot_index=slot_index, strategies=self.strategies)

    async def stop(self) -> None:
        if self._pw is None or self._browser is None:
            return
        await shutdown_browser(self._pw, self._browser)
        self._pw = self._browser = None
