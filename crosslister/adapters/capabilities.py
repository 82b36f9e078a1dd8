from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Literal

from crosslister.core.errors import ValidationRejected
from crosslister.schemas.listing import NormalizedListing

Transport = Literal["browser", "internal_api"]


@dataclass(frozen=True)
class AdapterCapabilities:
    """
    Describes WHAT a marketplace accepts and HOW we drive it.
    """
    platform: str
    transport: Transport

    max_photos: int
    requires_title: bool = True
    supports_delete: bool = True

    max_description_chars: int | None = None


def fit_listing(
    caps: AdapterCapabilities,
    listing: NormalizedListing,
    warn: Callable[[str], None],
) -> NormalizedListing:
    """Shorten a listing to what the marketplace accepts, warning about anything cut."""
    if caps.requires_title and not listing.title.strip():
        raise ValidationRejected(f"{caps.platform} listings need a title", field="title")

    limit = caps.max_description_chars
    if limit is not None and len(listing.description) > limit:
        warn(f"Description shortened from {len(listing.description)} to {limit} characters for {caps.platform}")
        listing = listing.model_copy(update={"description": listing.description[:limit]})
    return listing
