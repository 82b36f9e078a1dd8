from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Condition = Literal["new", "like_new", "good", "fair", "poor"]


class NormalizedListing(BaseModel):
    """
    Marketplace-agnostic listing as produced by the seller dashboard.

    Adapters read platform-specific tweaks from ``platform_overrides[platform]``
    (e.g. ``category_path``, ``category_id``, ``brand_id``, ``shipping_carrier``).
    """
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=20_000)
    price: Decimal = Field(gt=0, description="Seller asking price in major currency units.")
    original_price: Decimal | None = Field(default=None, gt=0)
    quantity: int = Field(default=1, ge=1, le=999)
    condition: Condition = "good"

    # ordered, first = primary photo
    images: list[str] = Field(default_factory=list, max_length=50)

    brand: str | None = Field(default=None, max_length=120)
    size: str | None = Field(default=None, max_length=60)
    colors: list[str] = Field(default_factory=list, max_length=5)
    category_hints: list[str] = Field(default_factory=list, description="Coarse to fine, e.g. ['Women', 'Tops', 'Blouses'].")

    weight_oz: float | None = Field(default=None, ge=0)
    new_with_tags: bool | None = None

    platform_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("images")
    @classmethod
    def validate_images(cls, v: list[str]) -> list[str]:
        out = []
        for url in v:
            u = url.strip()
            if not u.startswith(("http://", "https://")):
                raise ValueError(f"image reference must be an http(s) URL: {url!r}")
            out.append(u)
        return out

    @field_validator("category_hints", "colors")
    @classmethod
    def strip_blank(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s and s.strip()]

    def overrides_for(self, platform: str) -> dict[str, Any]:
        return dict(self.platform_overrides.get(platform.lower(), {}))

    def category_path(self, platform: str) -> list[str]:
        path = self.overrides_for(platform).get("category_path")
        if isinstance(path, list) and path:
            return [str(p) for p in path]
        return list(self.category_hints)
