import random

from crosslister.core.config import settings


def compute_backoff_seconds(attempt: int, base: int | None = None, cap: int | None = None) -> int:
    # exponential backoff with jitter, capped
    base = settings.retry_base_seconds if base is None else base
    cap = settings.retry_cap_seconds if cap is None else cap
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return min(cap, exp + jitter)
