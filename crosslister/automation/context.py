from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from playwright.async_api import BrowserContext

from crosslister.automation.driver import PageDriver
from crosslister.automation.timing import ExecutionMode, Timing
from crosslister.services.http_client import CrosslistHttpClient

log = logging.getLogger(__name__)

ContextFactory = Callable[[], Awaitable[BrowserContext]]


class ExecutionContext:
    """
    Per-job automation scope.

    Owns at most one browser context and page, opened on first use so jobs
    served through an internal API never start a browser. Never shared
    between jobs; `close()` is called by BrowserPool on every exit path.
    """

    def __init__(
        self,
        *,
        mode: ExecutionMode,
        http: CrosslistHttpClient,
        timing: Timing | None = None,
        open_context: ContextFactory | None = None,
    ):
        self.mode = mode
        self.http = http
        self.timing = timing or Timing()
        self.warnings: list[str] = []

        self._open_context = open_context
        self._browser_context: BrowserContext | None = None
        self._driver: PageDriver | None = None
        self._cookies: list[dict[str, Any]] = []

    def warn(self, message: str) -> None:
        log.warning("job warning: %s", message)
        self.warnings.append(message)

    async def driver(self) -> PageDriver:
        if self._driver is None:
            if self._open_context is None:
                raise RuntimeError("No browser is available in this execution context")
            self._browser_context = await self._open_context()
            if self._cookies:
                await self._browser_context.add_cookies(self._cookies)
            page = await self._browser_context.new_page()
            page.set_default_timeout(self.timing.element_timeout_ms)
            self._driver = PageDriver(page, mode=self.mode, timing=self.timing)
        return self._driver

    async def apply_auth(self, cookies: list[dict[str, Any]]) -> None:
        # replace, never merge: the newest valid auth material wins
        self._cookies = [dict(c) for c in cookies]
        if self._browser_context is not None:
            await self._browser_context.clear_cookies()
            if self._cookies:
                await self._browser_context.add_cookies(self._cookies)

    async def export_cookies(self) -> list[dict[str, Any]]:
        if self._browser_context is None:
            return [dict(c) for c in self._cookies]
        return [dict(c) for c in await self._browser_context.cookies()]

    async def close(self) -> None:
        bc, self._browser_context, self._driver = self._browser_context, None, None
        if bc is not None:
            await bc.close()
