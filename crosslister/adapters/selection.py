from __future__ import annotations

import logging
from typing import Sequence

from crosslister.automation.driver import PageDriver
from crosslister.automation.timing import essential_delay
from crosslister.core.errors import ElementNotFound, OperationTimeout, ValidationRejected

log = logging.getLogger(__name__)


def _norm(s: str) -> str:
    return " ".join(s.casefold().split())


def matches_label(current: str | None, label: str) -> bool:
    return bool(current) and _norm(current) == _norm(label)


def matches_path(current: str | None, path: Sequence[str]) -> bool:
    """True when `current` shows every path segment, in order."""
    if not current or not path:
        return False
    text = _norm(current)
    pos = 0
    for segment in path:
        idx = text.find(_norm(segment), pos)
        if idx < 0:
            return False
        pos = idx + len(_norm(segment))
    return True


async def ensure_selected(
    driver: PageDriver,
    *,
    field: str,
    label: str,
    open_selector: str,
    option_selector: str,
    current_selector: str | None = None,
) -> bool:
    """
    Select `label` in a dropdown unless it is already the current choice.

    Returns True when a selection was made, False when nothing needed doing,
    so running the step twice never re-opens or re-clicks anything.
    """
    if current_selector:
        current = await driver.text_of(current_selector)
        if matches_label(current, label):
            log.debug("select %s: already %r", field, current)
            return False

    await driver.click(open_selector, field=field)
    await driver.wait_for_element(option_selector, field=field)
    chosen = await driver.click_option_by_text(option_selector, label)
    if chosen is None:
        raise ValidationRejected(f"No '{label}' option available for {field}", field=field)
    log.info("select %s: %r", field, chosen)
    return True


async def ensure_path_selected(
    driver: PageDriver,
    *,
    field: str,
    path: Sequence[str],
    open_selector: str,
    option_selector: str,
    current_selector: str,
) -> bool:
    """Walk a hierarchical picker (department > category > subcategory) once."""
    if not path:
        return False

    current = await driver.text_of(current_selector)
    if matches_path(current, path):
        log.debug("select %s: already %r", field, current)
        return False

    await driver.click(open_selector, field=field)
    for depth, segment in enumerate(path):
        await driver.wait_for_element(option_selector, field=field)
        chosen = await driver.click_option_by_text(option_selector, segment)
        if chosen is None:
            if depth == 0:
                raise ValidationRejected(f"No '{segment}' option available for {field}", field=field)
            # deeper levels are refinements; keep what was reached
            log.warning("select %s: stopped at depth %d, no option %r", field, depth, segment)
            break
        # the next level renders after a round-trip
        await essential_delay(300, 600)
    return True


async def optional_step(name: str, coro, *, warn=None) -> bool:
    """
    Run an optional form step; failures are logged and the form goes on.
    """
    try:
        await coro
        return True
    except (ElementNotFound, ValidationRejected, OperationTimeout) as e:
        log.warning("optional step %s skipped: %s", name, e.message)
        if warn is not None:
            warn(f"Optional field '{name}' was not set: {e.message}")
        return False
