from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

from crosslister.core.config import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Brand:
    id: int
    name: str


def parse_brands(document: dict[str, Any]) -> tuple[Brand, ...]:
    """Brands out of a Mercari master-data export (`data.master.itemBrands`)."""
    master = ((document.get("data") or {}).get("master")) or {}
    brands = []
    for item in master.get("itemBrands") or []:
        try:
            brands.append(Brand(id=int(item["id"]), name=str(item["name"])))
        except (KeyError, TypeError, ValueError):
            continue
    return tuple(brands)


@lru_cache(maxsize=4)
def load_brands(path: str) -> tuple[Brand, ...]:
    with Path(path).open(encoding="utf-8") as f:
        brands = parse_brands(json.load(f))
    log.info("mercari: loaded %d brands from %s", len(brands), path)
    return brands


def configured_brands() -> tuple[Brand, ...]:
    if not settings.mercari_master_data_path:
        return ()
    return load_brands(str(settings.mercari_master_data_path))


def find_brand_id(brands: Sequence[Brand], name: str | None) -> int | None:
    """
    Exact case-insensitive name match first, then the first brand whose name
    contains (or is contained in) the wanted one.
    """
    wanted = (name or "").strip().lower()
    if not wanted:
        return None
    for b in brands:
        if b.name.lower() == wanted:
            return b.id
    for b in brands:
        known = b.name.lower()
        if known and (wanted in known or known in wanted):
            return b.id
    return None
