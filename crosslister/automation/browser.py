from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from crosslister.automation.context import ExecutionContext
from crosslister.automation.timing import ExecutionMode, Timing
from crosslister.core.config import settings
from crosslister.services.http_client import CrosslistHttpClient

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def browser_launch_args() -> list[str]:
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-blink-features=AutomationControlled",
    ]


def timing_from_settings() -> Timing:
    return Timing(
        typing_ms=tuple(settings.typing_delay_ms),
        action_ms=tuple(settings.action_delay_ms),
        page_load_timeout_ms=settings.page_load_timeout_ms,
        form_submit_timeout_ms=settings.form_submit_timeout_ms,
        element_timeout_ms=settings.element_timeout_ms,
    )


class BrowserPool:
    """
    One Chromium process per worker, one isolated browser context per job.
    """

    def __init__(self, *, headless: bool = True, timing: Timing | None = None, user_agent: str = DEFAULT_USER_AGENT):
        self.headless = headless
        self.timing = timing or Timing()
        self.user_agent = user_agent
        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._pw is None:
                    self._pw = await async_playwright().start()
                log.info("browser: launching chromium (headless=%s)", self.headless)
                self._browser = await self._pw.chromium.launch(headless=self.headless, args=browser_launch_args())
            return self._browser

    async def new_context(self) -> BrowserContext:
        browser = await self._ensure_browser()
        return await browser.new_context(
            viewport={"width": 1280, "height": 900},
            user_agent=self.user_agent,
            locale="en-US",
        )

    @asynccontextmanager
    async def execution_context(self, *, mode: ExecutionMode, http: CrosslistHttpClient) -> AsyncIterator[ExecutionContext]:
        ctx = ExecutionContext(mode=mode, http=http, timing=self.timing, open_context=self.new_context)
        try:
            yield ctx
        finally:
            await ctx.close()

    async def aclose(self) -> None:
        browser, self._browser = self._browser, None
        pw, self._pw = self._pw, None
        if browser is not None:
            await browser.close()
        if pw is not None:
            await pw.stop()
