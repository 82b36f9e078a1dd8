from __future__ import annotations

import re

from crosslister.schemas.listing import NormalizedListing

BASE_URL = "https://poshmark.com"
LOGIN_URL = f"{BASE_URL}/login"
FEED_URL = f"{BASE_URL}/feed"
CREATE_URL = f"{BASE_URL}/create-listing"
EDIT_URL = BASE_URL + "/edit-listing/{listing_id}"
LISTING_URL = BASE_URL + "/listing/{listing_id}"

MAX_PHOTOS = 16
MAX_COLORS = 2
MAX_TITLE_CHARS = 80
MAX_DESCRIPTION_CHARS = 1500


class S:
    """Poshmark DOM selectors. They drift; keep them all in one place."""
    LOGIN_USERNAME = 'input[name="login_form[username_email]"]'
    LOGIN_PASSWORD = 'input[name="login_form[password]"]'
    LOGIN_SUBMIT = 'button[type="submit"]'
    LOGIN_ERROR = ".form__error-message, .error_banner, [data-test=\"login-error\"]"

    LOGGED_IN_MARKERS = (
        '[data-et-name="sell"]',
        'a[href="/sell"]',
        ".user-image",
        '[data-test="header-user-menu"]',
        'a[href*="/news"]',
    )
    LOGGED_OUT_MARKERS = (
        'a[href="/login"]',
        'a[href="/signup"]',
        'form[action*="login"]',
        'input[name="login_form[username_email]"]',
    )

    PHOTO_INPUT = 'input#img-file-input[type="file"], input[type="file"][accept*="image"]'
    PHOTO_APPLY = 'button[data-et-name="apply"]'

    TITLE = 'input[data-vv-name="title"]'
    DESCRIPTION = 'textarea[data-vv-name="description"]'

    CATEGORY_OPEN = ".dropdown__selector--select-tag"
    CATEGORY_CURRENT = ".dropdown__selector--select-tag"
    CATEGORY_OPTION = "a.dropdown__menu__item, .dropdown__menu__item"

    SIZE_OPEN = '[data-test="size"]'
    SIZE_OPTION = 'button[id^="size-"], .listing-editor__size-tile'

    COLOR_OPEN = '[data-et-name="color"]'
    COLOR_TILE = ".listing-editor__tile--color"
    COLOR_DONE = 'button[data-et-name="color_done"], button[data-et-name="apply"]'

    NWT_YES = 'button[data-et-name="nwt_yes"]'
    NWT_NO = 'button[data-et-name="nwt_no"]'
    CONDITION_OPEN = '[data-test="condition-select"], [data-et-name="condition"]'
    CONDITION_OPTION = ".dropdown__menu__item, option"

    QUANTITY_MULTIPLE = 'button[data-et-name="multiple"]'
    QUANTITY = 'input[data-vv-name="quantityAvailable0"]'

    ORIGINAL_PRICE = 'input[data-vv-name="originalPrice"]'
    LISTING_PRICE = 'input[data-vv-name="listingPrice"]'

    NEXT = 'button[data-et-name="next"]'
    LIST = 'button[data-et-name="list"]'
    FORM_ERROR = '.form__error-message, [data-test="form-error"], .listing-editor__error'

    DELETE = 'button[data-et-name="delete_listing"], a[data-et-name="delete_listing"]'
    DELETE_CONFIRM = 'button[data-et-name="delete_listing_confirm"], .modal button.btn--primary'
    NOT_FOUND = '[data-test="not-found"], .not-found'


# normalized condition -> (nwt flag value, condition label)
CONDITIONS: dict[str, tuple[str, str]] = {
    "new": ("nwt", "NWT (New With Tags)"),
    "like_new": ("nwot", "NWOT (New Without Tags)"),
    "good": ("good", "Good - Used"),
    "fair": ("fair", "Fair - Used"),
    "poor": ("poor", "Poor - Used"),
}

COLORS = (
    "Red", "Pink", "Orange", "Yellow", "Green", "Blue", "Purple", "Gold",
    "Silver", "Black", "Gray", "White", "Cream", "Brown", "Tan",
)

COLOR_SYNONYMS = {
    "grey": "Gray", "navy": "Blue", "teal": "Blue", "beige": "Tan", "khaki": "Tan",
    "ivory": "Cream", "off white": "Cream", "burgundy": "Red", "maroon": "Red",
    "lavender": "Purple", "olive": "Green", "rose gold": "Gold", "nude": "Tan",
}

SIZE_SYNONYMS = {"one size": "OS", "onesize": "OS", "os": "OS"}

_LISTING_ID = re.compile(r"/listing/(?:[^/?#]*-)?([0-9a-f]{24})(?:[/?#]|$)")


def condition_for(listing: NormalizedListing) -> tuple[str, str]:
    return CONDITIONS.get(listing.condition, CONDITIONS["good"])


def is_new_with_tags(listing: NormalizedListing) -> bool:
    if listing.new_with_tags is not None:
        return listing.new_with_tags
    return condition_for(listing)[0] == "nwt"


def map_colors(listing: NormalizedListing) -> list[str]:
    override = listing.overrides_for("poshmark").get("colors")
    source = override if isinstance(override, list) else listing.colors
    out: list[str] = []
    for raw in source:
        key = str(raw).strip().casefold()
        label = COLOR_SYNONYMS.get(key) or next((c for c in COLORS if c.casefold() == key), None)
        if label and label not in out:
            out.append(label)
    return out[:MAX_COLORS]


def map_size(listing: NormalizedListing) -> str | None:
    size = listing.overrides_for("poshmark").get("size") or listing.size
    if not size:
        return None
    return SIZE_SYNONYMS.get(str(size).strip().casefold(), str(size).strip())


def listing_id_from_url(url: str) -> str | None:
    m = _LISTING_ID.search(url or "")
    return m.group(1) if m else None
