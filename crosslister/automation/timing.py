from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from enum import Enum

sleep = asyncio.sleep


class ExecutionMode(str, Enum):
    """
    How the automation surface is being driven.

    interactive: a foreground, visible surface; human-like pacing is applied.
    background: a throttled/headless surface; cosmetic pauses collapse to zero.
    """
    INTERACTIVE = "interactive"
    BACKGROUND = "background"


@dataclass(frozen=True)
class Timing:
    typing_ms: tuple[int, int] = (50, 150)
    action_ms: tuple[int, int] = (500, 2000)
    page_load_timeout_ms: int = 30_000
    form_submit_timeout_ms: int = 15_000
    element_timeout_ms: int = 10_000


def compute_delay_ms(min_ms: float, max_ms: float, mode: ExecutionMode, *, essential: bool = False) -> float:
    # essential delays stand for server/network round-trips and are never collapsed
    if min_ms > max_ms:
        min_ms, max_ms = max_ms, min_ms
    if mode is ExecutionMode.BACKGROUND and not essential:
        return 0.0
    return random.uniform(max(0.0, min_ms), max(0.0, max_ms))


async def delay(min_ms: float, max_ms: float, mode: ExecutionMode, *, essential: bool = False) -> float:
    ms = compute_delay_ms(min_ms, max_ms, mode, essential=essential)
    await sleep(ms / 1000.0)
    return ms


async def essential_delay(min_ms: float, max_ms: float | None = None) -> float:
    return await delay(min_ms, max_ms if max_ms is not None else min_ms, ExecutionMode.INTERACTIVE, essential=True)
