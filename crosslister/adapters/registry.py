from __future__ import annotations
from typing import Dict

from crosslister.adapters.base import PlatformAdapter
from crosslister.adapters.depop.adapter import DepopAdapter
from crosslister.adapters.mercari.adapter import MercariAdapter
from crosslister.adapters.poshmark.adapter import PoshmarkAdapter
from crosslister.core.errors import UnsupportedPlatform


_ADAPTERS: Dict[str, PlatformAdapter] = {
    "poshmark": PoshmarkAdapter(),
    "mercari": MercariAdapter(),
    "depop": DepopAdapter(),
}


def get_adapter(platform: str) -> PlatformAdapter:
    key = platform.lower().strip()
    if key not in _ADAPTERS:
        raise UnsupportedPlatform(f"No adapter registered for platform={platform}")
    return _ADAPTERS[key]


def register_adapter(adapter: PlatformAdapter) -> PlatformAdapter | None:
    """Install (or replace) an adapter; returns the one it replaced."""
    key = adapter.platform.lower().strip()
    previous = _ADAPTERS.get(key)
    _ADAPTERS[key] = adapter
    return previous


def unregister_adapter(platform: str) -> None:
    _ADAPTERS.pop(platform.lower().strip(), None)


def supported_platforms() -> list[str]:
    return sorted(_ADAPTERS.keys())
