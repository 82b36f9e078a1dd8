from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from crosslister.automation.driver import PageDriver

log = logging.getLogger(__name__)

CHALLENGE_PHRASES: Sequence[str] = (
    "verification code",
    "security code",
    "verify it's you",
    "verify your identity",
    "confirm this device",
    "pardon the interruption",
    "checking your browser",
    "are you a robot",
)

CHALLENGE_SELECTORS: Sequence[str] = (
    'input[name="code"]',
    'input[name="otp"]',
    'input[autocomplete="one-time-code"]',
    "#challenge-form",
    'iframe[src*="challenges.cloudflare.com"]',
    'iframe[src*="captcha"]',
)


@dataclass(frozen=True)
class LoginState:
    logged_in: bool
    positive: list[str]
    negative: list[str]


async def detect_login_state(
    driver: PageDriver,
    *,
    positive: Sequence[str],
    negative: Sequence[str],
    positive_url_fragments: Sequence[str] = (),
    negative_url_fragments: Sequence[str] = ("/login", "/signin", "/signup"),
) -> LoginState:
    """
    Logged in only when at least one authenticated-only marker is present AND
    no logged-out marker is. A missing login link alone proves nothing.
    """
    url = (driver.url or "").lower()
    found_pos = [s for s in positive if await driver.query(s) is not None]
    found_neg = [s for s in negative if await driver.query(s) is not None]

    found_pos += [f"url:{f}" for f in positive_url_fragments if f in url]
    found_neg += [f"url:{f}" for f in negative_url_fragments if f in url]

    state = LoginState(logged_in=bool(found_pos) and not found_neg, positive=found_pos, negative=found_neg)
    log.debug("login state %s: +%s -%s", url, found_pos, found_neg)
    return state


async def detect_challenge(driver: PageDriver) -> str | None:
    """Returns a short description of a step-up challenge on the page, if any."""
    for sel in CHALLENGE_SELECTORS:
        if await driver.query(sel) is not None:
            return f"challenge element {sel}"

    text = (await driver.page_text()).lower()
    for phrase in CHALLENGE_PHRASES:
        if phrase in text:
            return f"challenge text '{phrase}'"
    return None
