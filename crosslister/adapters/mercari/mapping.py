from __future__ import annotations

from crosslister.adapters.pricing import ceil_cents, percent_of_cents
from crosslister.schemas.listing import NormalizedListing

BASE_URL = "https://www.mercari.com"
LOGIN_URL = f"{BASE_URL}/login/"
ACCOUNT_URL = f"{BASE_URL}/mypage/"
API_URL = f"{BASE_URL}/v1/api"
ITEM_URL = BASE_URL + "/us/item/{item_id}"

MAX_PHOTOS = 12
MAX_TITLE_CHARS = 80
MAX_DESCRIPTION_CHARS = 1000

# persisted GraphQL operations used by the web client
UPLOAD_PHOTOS_HASH = "9aa889ac01e549a01c66c7baabc968b0e4a7fa4cd0b6bd32b7599ce10ca09a10"
CREATE_LISTING_HASH = "265dab5d0d382d3c83dda7d65e9ad111f47c27aa5d92c7d9a4bacd890d5e32c0"
UPDATE_ITEM_STATUS_HASH = "55bd4e7d2bc2936638e1451da3231e484993635d7603431d1a2978e3d59656f8"

DEFAULT_CATEGORY_ID = 3373
DEFAULT_BRAND_ID = 19044
DEFAULT_ZIP_CODE = "90210"
BUYER_PAYS_SHIPPING = 2
SALES_FEE_PERCENT = 10
AUTO_PRICE_DROP_FLOOR_PERCENT = 85
DEFAULT_PACKAGE_WEIGHT_OZ = 16

CONDITION_IDS = {"new": 1, "like_new": 2, "good": 3, "fair": 4, "poor": 5}

# (upper bound in oz inclusive, shipping class id)
SHIPPING_CLASSES: tuple[tuple[float, int], ...] = (
    (4, 2128),
    (8, 2129),
    (12, 2130),
    (16, 2131),
    (32, 2132),
    (48, 2133),
    (80, 2134),
    (160, 2135),
)
HEAVY_SHIPPING_CLASS = 2136


class S:
    LOGIN_EMAIL = 'input[name="email"], input[data-testid="login-email-input"]'
    LOGIN_PASSWORD = 'input[name="password"], input[data-testid="login-password-input"]'
    LOGIN_SUBMIT = 'button[type="submit"], button[data-testid="login-button"]'
    LOGIN_ERROR = '[data-testid="login-error"], [role="alert"]'

    LOGGED_IN_MARKERS = (
        '[data-testid="UserMenuButton"]',
        '[data-testid="ProfileIcon"]',
        'a[href="/sell/"]',
        'a[href*="/mypage/"]',
    )
    LOGGED_OUT_MARKERS = (
        'a[href="/login/"]',
        'a[href*="/signup"]',
        '[data-testid="LoginButton"]',
        'input[data-testid="login-email-input"]',
    )


def api_headers(bearer: str, csrf: str) -> dict[str, str]:
    return {
        "authorization": f"Bearer {bearer}",
        "x-csrf-token": csrf,
        "x-app-version": "1",
        "x-platform": "web",
        "x-gql-migration": "1",
        "apollo-require-preflight": "true",
    }


def persisted(operation: str, sha256: str, variables: dict) -> dict:
    return {
        "operationName": operation,
        "variables": variables,
        "extensions": {"persistedQuery": {"version": 1, "sha256Hash": sha256}},
    }


def shipping_class_ids(weight_oz: float | None) -> list[int]:
    w = weight_oz or 0
    for bound, class_id in SHIPPING_CLASSES:
        if w <= bound:
            return [class_id]
    return [HEAVY_SHIPPING_CLASS]


def _int_override(overrides: dict, key: str, default: int) -> int:
    raw = overrides.get(key)
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def build_create_input(listing: NormalizedListing, photo_ids: list[str], *, brand_id: int | None = None) -> dict:
    overrides = listing.overrides_for("mercari")
    if brand_id is None:
        brand_id = _int_override(overrides, "brand_id", DEFAULT_BRAND_ID)
    price = ceil_cents(listing.price)
    weight = listing.weight_oz or DEFAULT_PACKAGE_WEIGHT_OZ
    shipping = shipping_class_ids(weight)

    return {
        "photoIds": list(photo_ids),
        "name": listing.title[:MAX_TITLE_CHARS],
        "description": (listing.description or listing.title)[:MAX_DESCRIPTION_CHARS],
        "price": price,
        "categoryId": _int_override(overrides, "category_id", DEFAULT_CATEGORY_ID),
        "conditionId": CONDITION_IDS.get(listing.condition, CONDITION_IDS["good"]),
        "brandId": brand_id,
        "shippingPayerId": BUYER_PAYS_SHIPPING,
        "zipCode": str(overrides.get("zip_code") or DEFAULT_ZIP_CODE),
        "salesFee": percent_of_cents(price, SALES_FEE_PERCENT),
        "minPriceForAutoPriceDrop": percent_of_cents(price, AUTO_PRICE_DROP_FLOOR_PERCENT),
        "offerConfig": {"minPriceForSmartOffer": 0},
        "shippingClassIds": shipping,
        "suggestedShippingClassIds": shipping,
        "shippingWeightUnit": "OUNCE",
        "shippingDimensionUnit": "INCH",
        "shippingPackageWeight": weight,
        "shippingPackageLength": 12,
        "shippingPackageHeight": 10,
        "shippingPackageWidth": 12,
        "isShippingSoyo": False,
    }
