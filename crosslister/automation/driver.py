from __future__ import annotations

import asyncio
import base64
import logging
import re
import time

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from crosslister.automation import scripts
from crosslister.automation.timing import ExecutionMode, Timing, delay
from crosslister.core.errors import ElementNotFound, NetworkError, OperationTimeout

log = logging.getLogger(__name__)

# host-side slack on top of the in-page observer timeout
_HOST_GRACE_SECONDS = 2.0


class PageDriver:
    """
    Automation primitives bound to one page and one execution mode.

    Every wait is bounded: a missing element surfaces as ElementNotFound and a
    stalled navigation as OperationTimeout, never as a hung worker.
    """

    def __init__(self, page: Page, *, mode: ExecutionMode, timing: Timing | None = None):
        self.page = page
        self.mode = mode
        self.timing = timing or Timing()

    @property
    def url(self) -> str:
        return self.page.url

    # navigation

    async def goto(self, url: str, *, timeout_ms: int | None = None) -> None:
        timeout = timeout_ms or self.timing.page_load_timeout_ms
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise OperationTimeout(f"Timed out loading {url}", detail={"timeout_ms": timeout}) from e
        except PlaywrightError as e:
            raise NetworkError(f"Navigation to {url} failed: {e.message}") from e

    async def wait_for_url(self, pattern: str, *, timeout_ms: int | None = None) -> str:
        timeout = timeout_ms or self.timing.form_submit_timeout_ms
        try:
            await self.page.wait_for_url(re.compile(pattern), timeout=timeout, wait_until="commit")
        except PlaywrightTimeoutError as e:
            raise OperationTimeout(f"Timed out waiting for URL matching {pattern}", detail={"url": self.page.url}) from e
        return self.page.url

    # lookup

    async def query(self, selector: str) -> ElementHandle | None:
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError as e:
            log.debug("query %s failed: %s", selector, e)
            return None

    async def query_all(self, selector: str) -> list[ElementHandle]:
        try:
            return await self.page.query_selector_all(selector)
        except PlaywrightError as e:
            log.debug("query_all %s failed: %s", selector, e)
            return []

    async def wait_for_element(
        self,
        selector: str,
        *,
        timeout_ms: int | None = None,
        field: str | None = None,
    ) -> ElementHandle:
        timeout = timeout_ms or self.timing.element_timeout_ms

        existing = await self.query(selector)
        if existing is not None:
            return existing

        deadline = time.monotonic() + timeout / 1000.0
        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                raise ElementNotFound(selector, field=field, timeout_ms=timeout)
            try:
                handle = await asyncio.wait_for(
                    self.page.evaluate_handle(scripts.WAIT_FOR_ELEMENT, [selector, remaining_ms]),
                    timeout=remaining_ms / 1000.0 + _HOST_GRACE_SECONDS,
                )
            except asyncio.TimeoutError:
                raise ElementNotFound(selector, field=field, timeout_ms=timeout) from None
            except PlaywrightError as e:
                # the document navigated under the observer; observe the new one
                if "context was destroyed" in str(e).lower() or "navigation" in str(e).lower():
                    continue
                raise NetworkError(f"Waiting for {selector} failed: {e}") from e

            element = handle.as_element()
            if element is not None:
                return element
            await handle.dispose()
            raise ElementNotFound(selector, field=field, timeout_ms=timeout)

    async def text_of(self, selector: str) -> str | None:
        el = await self.query(selector)
        if el is None:
            return None
        return (await el.inner_text()).strip()

    async def value_of(self, element: ElementHandle) -> str:
        return str(await element.evaluate(scripts.READ_VALUE))

    async def page_text(self) -> str:
        try:
            return await self.page.inner_text("body", timeout=self.timing.element_timeout_ms)
        except PlaywrightError:
            return ""

    # interaction

    async def delay(self, kind: str = "action", *, essential: bool = False) -> None:
        lo, hi = self.timing.typing_ms if kind == "typing" else self.timing.action_ms
        await delay(lo, hi, self.mode, essential=essential)

    async def type_text(self, element: ElementHandle, text: str) -> None:
        if self.mode is ExecutionMode.BACKGROUND:
            await element.evaluate(scripts.SET_VALUE, text)
            return

        await element.focus()
        await element.evaluate(scripts.CLEAR_VALUE)
        lo, hi = self.timing.typing_ms
        for ch in text:
            await self.page.keyboard.type(ch)
            await delay(lo, hi, self.mode)
        await element.dispatch_event("change")

    async def click_element(self, element: ElementHandle, *, wait: bool = True) -> None:
        try:
            await element.scroll_into_view_if_needed()
        except PlaywrightError as e:
            log.debug("scroll_into_view failed: %s", e)
        if wait:
            await self.delay("action")
        try:
            await element.click()
        except PlaywrightTimeoutError as e:
            raise OperationTimeout("Timed out clicking element") from e

    async def click(self, selector: str, *, field: str | None = None, timeout_ms: int | None = None) -> ElementHandle:
        el = await self.wait_for_element(selector, field=field, timeout_ms=timeout_ms)
        await self.click_element(el)
        return el

    async def fill(self, selector: str, text: str, *, field: str | None = None) -> ElementHandle:
        el = await self.wait_for_element(selector, field=field)
        await self.type_text(el, text)
        return el

    async def click_option_by_text(self, option_selector: str, label: str) -> str | None:
        """
        Clicks the first option whose text equals `label` (case-insensitive),
        falling back to the first one that contains it. Returns the clicked text.
        """
        wanted = label.strip().casefold()
        options = await self.query_all(option_selector)
        texts = [((await o.inner_text()) or "").strip() for o in options]

        for opt, text in zip(options, texts):
            if text.casefold() == wanted:
                await self.click_element(opt)
                return text
        for opt, text in zip(options, texts):
            if wanted and wanted in text.casefold():
                await self.click_element(opt)
                return text
        return None

    async def upload_file(self, input_element: ElementHandle, data: bytes, filename: str, mime_type: str) -> int:
        b64 = base64.b64encode(data).decode("ascii")
        try:
            count = await input_element.evaluate(scripts.INJECT_FILE, [b64, filename, mime_type])
        except PlaywrightError as e:
            raise NetworkError(f"Injecting {filename} failed: {e}") from e
        return int(count or 0)
