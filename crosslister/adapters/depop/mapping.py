from __future__ import annotations

import re

from crosslister.adapters.pricing import two_decimals
from crosslister.schemas.listing import NormalizedListing

BASE_URL = "https://www.depop.com"
LOGIN_URL = f"{BASE_URL}/login/"
CREATE_URL = f"{BASE_URL}/products/create/"
PRODUCT_URL = BASE_URL + "/products/{product_id}/"
EDIT_URL = BASE_URL + "/products/edit/{product_id}/"

MAX_PHOTOS = 4
MAX_DESCRIPTION_CHARS = 1000
NO_BRAND = "Other"


class S:
    LOGIN_USERNAME = 'input#username, input[name="username"]'
    LOGIN_PASSWORD = 'input#password, input[name="password"][type="password"]'
    LOGIN_SUBMIT = 'button[type="submit"]'
    LOGIN_ERROR = '[data-testid="login__error"], [role="alert"]'

    LOGGED_IN_MARKERS = (
        '[data-testid="user-menu"]',
        'nav a[href^="/u/"], header a[href^="/u/"]',
        'a[href*="/messages"]',
        'a[href*="/settings"]',
    )
    LOGGED_OUT_MARKERS = (
        'a[href*="/login"]',
        'a[href*="/signup"]',
        'form[action*="login"]',
    )

    PHOTO_INPUT = 'input[data-testid="upload-input__input"]'
    DESCRIPTION = 'textarea#description[name="description"]'

    CATEGORY = 'input#group-input[role="combobox"]'
    CATEGORY_OPTION = 'ul#group-menu li[role="option"]'
    PRODUCT_TYPE = 'input#productType-input[role="combobox"]'
    PRODUCT_TYPE_OPTION = 'ul#productType-menu li[role="option"]'
    BRAND = 'input#brand-input[role="combobox"]'
    BRAND_OPTION = 'ul#brand-menu li[role="option"]'
    SIZE = 'input#variants-input[role="combobox"]'
    SIZE_OPTION = 'ul#variants-menu li[role="option"]'
    COLOR = 'input#colour-input[role="combobox"]'
    COLOR_OPTION = 'ul#colour-menu li[role="option"]'
    CONDITION = 'input#condition-input[role="combobox"]'
    CONDITION_OPTION = 'ul#condition-menu li[role="option"]'
    PARCEL = 'input#shippingMethods-input[role="combobox"]'
    PARCEL_OPTION = 'ul#shippingMethods-menu li[role="option"]'

    PRICE = 'input[data-testid="priceAmount__input"]'
    SUBMIT = 'button[type="submit"]'
    FORM_ERROR = '[data-testid$="__error"], [role="alert"]'

    DELETE = 'button[data-testid="product__delete"], button[data-testid="deleteButton"]'
    DELETE_CONFIRM = '[role="dialog"] button[data-testid="confirm"], [role="dialog"] button[type="submit"]'
    NOT_FOUND = '[data-testid="not-found"], [data-testid="error-page"]'


CONDITIONS = {
    "new": "Brand new",
    "like_new": "Like new",
    "good": "Used - Good",
    "fair": "Used - Fair",
    "poor": "Used - Fair",
}

# (exclusive upper bound in oz, parcel label)
PARCEL_SIZES: tuple[tuple[float, str], ...] = (
    (4, "Extra extra small"),
    (8, "Extra small"),
    (12, "Small"),
    (16, "Medium"),
    (32, "Large"),
)
LARGEST_PARCEL = "Extra large"
DEFAULT_PARCEL = "Medium"

_PRODUCT_ID = re.compile(r"/products/([a-zA-Z0-9_-]+)")
_NOT_PRODUCT_PAGES = {"create", "edit"}


def condition_label(listing: NormalizedListing) -> str:
    return CONDITIONS.get(listing.condition, CONDITIONS["good"])


def parcel_size(weight_oz: float | None) -> str:
    if weight_oz is None:
        return DEFAULT_PARCEL
    for bound, label in PARCEL_SIZES:
        if weight_oz < bound:
            return label
    return LARGEST_PARCEL


def description_text(listing: NormalizedListing) -> str:
    """Depop has no title field; the title leads the description."""
    body = (listing.description or "").strip()
    text = listing.title.strip()
    if body and body != text:
        text = f"{text}\n\n{body}"
    return text[:MAX_DESCRIPTION_CHARS]


def price_text(listing: NormalizedListing) -> str:
    return str(two_decimals(listing.price))


def primary_color(listing: NormalizedListing) -> str | None:
    override = listing.overrides_for("depop").get("color")
    if override:
        return str(override)
    return listing.colors[0] if listing.colors else None


def product_id_from_url(url: str) -> str | None:
    m = _PRODUCT_ID.search(url or "")
    if not m or m.group(1) in _NOT_PRODUCT_PAGES:
        return None
    return m.group(1)
