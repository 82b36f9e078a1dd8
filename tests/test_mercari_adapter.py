import json
from decimal import Decimal

import httpx
import jwt
import pytest

from crosslister.adapters.mercari import mapping as m
from crosslister.adapters.mercari.adapter import MercariAdapter
from crosslister.adapters.mercari.mapping import S
from crosslister.adapters.mercari.master_data import Brand, configured_brands, find_brand_id
from crosslister.automation.context import ExecutionContext
from crosslister.automation.timing import ExecutionMode
from crosslister.core.config import settings
from crosslister.core.errors import AuthenticationFailure, NetworkError, UploadFailure, ValidationRejected, VerificationRequired
from crosslister.schemas.listing import NormalizedListing
from crosslister.services.http_client import CrosslistHttpClient
from crosslister.sessions.types import AuthMaterial, Session

from tests.fakes import FakeBrowserContext, FakeElement, FakePage

SESSION = Session(user_id="u1", platform="mercari", auth=AuthMaterial(tokens={"bearer": "bearer-1", "csrf": "csrf-1"}))
BRANDS = (Brand(id=1001, name="Nike"), Brand(id=1002, name="Nike Golf"), Brand(id=1003, name="Levi's"))


class MercariStub:
    """Routes image downloads and GraphQL calls; records every API request."""

    def __init__(self):
        self.api_calls: list[httpx.Request] = []
        self.upload_responses: list[httpx.Response] = []
        self.create_response = httpx.Response(200, json={"data": {"createListing": {"id": "m12345678"}}})
        self.status_response = httpx.Response(200, json={"data": {"updateItemStatus": {"id": "m1"}}})
        self.missing_images: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith("https://img.example.com/"):
            if url in self.missing_images:
                return httpx.Response(404)
            return httpx.Response(200, content=b"\xff\xd8\xff", headers={"content-type": "image/jpeg"})

        assert url == m.API_URL
        self.api_calls.append(request)
        if request.headers["content-type"].startswith("multipart/form-data"):
            if self.upload_responses:
                return self.upload_responses.pop(0)
            return httpx.Response(200, json={"data": {"uploadTempListingPhotos": {"uploadIds": [f"up-{len(self.api_calls)}"]}}})

        body = json.loads(request.content)
        if body["operationName"] == "createListing":
            return self.create_response
        return self.status_response


@pytest.fixture
async def stub_ctx():
    stub = MercariStub()
    http = CrosslistHttpClient(transport=httpx.MockTransport(stub))
    yield stub, ExecutionContext(mode=ExecutionMode.BACKGROUND, http=http)
    await http.aclose()


def _with_page(ctx, page):
    async def _open():
        return FakeBrowserContext(page)

    return ExecutionContext(mode=ExecutionMode.BACKGROUND, http=ctx.http, open_context=_open)


def _listing(**kw) -> NormalizedListing:
    data = {
        "title": "Nike Air Max 90",
        "description": "Worn twice.",
        "price": "49.99",
        "condition": "like_new",
        "images": ["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"],
        "weight_oz": 20,
    }
    data.update(kw)
    return NormalizedListing.model_validate(data)


def _json_calls(stub):
    return [json.loads(r.content) for r in stub.api_calls if r.headers["content-type"].startswith("application/json")]


@pytest.mark.asyncio
async def test_create_uploads_photos_then_creates_listing(stub_ctx):
    stub, ctx = stub_ctx
    result = await MercariAdapter().create_listing(SESSION, _listing(), ctx)

    assert result.platform_listing_id == "m12345678"
    assert result.platform_url == "https://www.mercari.com/us/item/m12345678"
    assert result.detail == {"photos_uploaded": 2, "photos_attempted": 2}

    first = stub.api_calls[0]
    assert first.headers["authorization"] == "Bearer bearer-1"
    assert first.headers["x-csrf-token"] == "csrf-1"

    (create,) = _json_calls(stub)
    assert create["extensions"]["persistedQuery"]["sha256Hash"] == m.CREATE_LISTING_HASH
    data = create["variables"]["input"]
    assert data["photoIds"] == ["up-1", "up-2"]
    assert data["price"] == 4999
    assert data["conditionId"] == 2
    assert data["shippingClassIds"] == [2132]
    assert data["salesFee"] == 500
    assert data["minPriceForAutoPriceDrop"] == 4249


@pytest.mark.asyncio
async def test_one_broken_image_becomes_a_warning(stub_ctx):
    stub, ctx = stub_ctx
    stub.missing_images.add("https://img.example.com/2.jpg")

    result = await MercariAdapter().create_listing(SESSION, _listing(), ctx)

    assert result.detail["photos_uploaded"] == 1
    assert len(ctx.warnings) == 1
    assert "Image 2 of 2" in ctx.warnings[0]


@pytest.mark.asyncio
async def test_rejected_upload_of_every_photo_fails(stub_ctx):
    stub, ctx = stub_ctx
    stub.upload_responses = [httpx.Response(200, json={"errors": [{"message": "invalid image"}]}) for _ in range(2)]

    with pytest.raises(UploadFailure):
        await MercariAdapter().create_listing(SESSION, _listing(), ctx)
    assert _json_calls(stub) == []


@pytest.mark.asyncio
async def test_unauthorized_maps_to_authentication_failure(stub_ctx):
    stub, ctx = stub_ctx
    stub.create_response = httpx.Response(401, json={"error": "unauthorized"})

    with pytest.raises(AuthenticationFailure):
        await MercariAdapter().create_listing(SESSION, _listing(images=[]), ctx)


@pytest.mark.asyncio
async def test_graphql_errors_are_classified(stub_ctx):
    stub, ctx = stub_ctx
    stub.create_response = httpx.Response(200, json={"errors": [{"message": "Price must be at least $1"}]})
    with pytest.raises(ValidationRejected):
        await MercariAdapter().create_listing(SESSION, _listing(images=[]), ctx)

    stub.create_response = httpx.Response(200, json={"errors": [{"message": "Token is expired"}]})
    with pytest.raises(AuthenticationFailure):
        await MercariAdapter().create_listing(SESSION, _listing(images=[]), ctx)

    stub.create_response = httpx.Response(503)
    with pytest.raises(NetworkError):
        await MercariAdapter().create_listing(SESSION, _listing(images=[]), ctx)


@pytest.mark.asyncio
async def test_delete_cancels_item_and_tolerates_missing(stub_ctx):
    stub, ctx = stub_ctx
    await MercariAdapter().delete_listing(SESSION, "m777", ctx)
    (call,) = _json_calls(stub)
    assert call["operationName"] == "UpdateItemStatusMutation"
    assert call["variables"]["input"] == {"id": "m777", "status": "cancel"}

    stub.status_response = httpx.Response(404, json={"error": "not found"})
    await MercariAdapter().delete_listing(SESSION, "m777", ctx)


@pytest.mark.asyncio
async def test_session_without_tokens_is_not_logged_in(stub_ctx):
    _, ctx = stub_ctx
    empty = Session(user_id="u1", platform="mercari", auth=AuthMaterial())
    assert await MercariAdapter().check_login(empty, ctx) is False
    with pytest.raises(AuthenticationFailure):
        await MercariAdapter().create_listing(empty, _listing(images=[]), ctx)


@pytest.mark.asyncio
async def test_expired_bearer_is_rejected_without_a_page_visit(stub_ctx):
    # stub_ctx has no browser; opening a page would raise
    _, ctx = stub_ctx
    bearer = jwt.encode({"userId": 7, "exp": 1_000_000_000}, "mercari-signing-secret-0123456789", algorithm="HS256")
    expired = Session(user_id="u1", platform="mercari", auth=AuthMaterial(tokens={"bearer": bearer, "csrf": "c"}))
    assert await MercariAdapter().check_login(expired, ctx) is False


@pytest.mark.asyncio
async def test_check_login_needs_an_account_marker_and_no_login_link(stub_ctx):
    _, ctx = stub_ctx
    page = FakePage()
    browser_ctx = _with_page(ctx, page)

    # nothing on the page proves a login
    assert await MercariAdapter().check_login(SESSION, browser_ctx) is False
    assert page.visited == [m.ACCOUNT_URL]

    page.add(S.LOGGED_IN_MARKERS[0], FakeElement())
    assert await MercariAdapter().check_login(SESSION, browser_ctx) is True

    page.add(S.LOGGED_OUT_MARKERS[0], FakeElement())
    assert await MercariAdapter().check_login(SESSION, browser_ctx) is False


@pytest.mark.asyncio
async def test_check_login_surfaces_challenge(stub_ctx):
    _, ctx = stub_ctx
    page = FakePage(body_text="Please enter the verification code we sent you")
    page.add(S.LOGGED_IN_MARKERS[0], FakeElement())

    with pytest.raises(VerificationRequired):
        await MercariAdapter().check_login(SESSION, _with_page(ctx, page))


@pytest.mark.asyncio
async def test_brand_name_is_mapped_from_master_data(stub_ctx):
    stub, ctx = stub_ctx
    adapter = MercariAdapter(brands=BRANDS)

    await adapter.create_listing(SESSION, _listing(images=[], brand="nike"), ctx)
    await adapter.create_listing(SESSION, _listing(images=[], brand="Levi's Vintage"), ctx)

    first, second = _json_calls(stub)
    assert first["variables"]["input"]["brandId"] == 1001
    # partial match on the known name
    assert second["variables"]["input"]["brandId"] == 1003
    assert ctx.warnings == []


@pytest.mark.asyncio
async def test_unknown_brand_warns_and_uses_default(stub_ctx):
    stub, ctx = stub_ctx
    await MercariAdapter(brands=BRANDS).create_listing(SESSION, _listing(images=[], brand="Obscure Label"), ctx)

    (create,) = _json_calls(stub)
    assert create["variables"]["input"]["brandId"] == m.DEFAULT_BRAND_ID
    assert ctx.warnings == ['Brand "Obscure Label" not found in Mercari brand list; listed under the default brand']


@pytest.mark.asyncio
async def test_brand_id_override_skips_lookup(stub_ctx):
    stub, ctx = stub_ctx
    listing = _listing(images=[], brand="Obscure Label", platform_overrides={"mercari": {"brand_id": 77}})
    await MercariAdapter(brands=BRANDS).create_listing(SESSION, listing, ctx)

    (create,) = _json_calls(stub)
    assert create["variables"]["input"]["brandId"] == 77
    assert ctx.warnings == []


def test_master_data_export_is_parsed(tmp_path, monkeypatch):
    path = tmp_path / "mercari-master.json"
    path.write_text(json.dumps({"data": {"master": {
        "itemCategories": [],
        "itemBrands": [{"id": 1001, "name": "Nike"}, {"id": "x", "name": "broken"}, {"name": "no id"}],
    }}}))
    monkeypatch.setattr(settings, "mercari_master_data_path", path)

    assert configured_brands() == (Brand(id=1001, name="Nike"),)
    assert find_brand_id(configured_brands(), "NIKE ") == 1001
    assert find_brand_id(configured_brands(), None) is None



def test_shipping_class_bounds_are_inclusive():
    assert m.shipping_class_ids(4) == [2128]
    assert m.shipping_class_ids(4.1) == [2129]
    assert m.shipping_class_ids(160) == [2135]
    assert m.shipping_class_ids(161) == [m.HEAVY_SHIPPING_CLASS]


def test_create_input_defaults_and_overrides():
    listing = _listing(
        description="",
        price=Decimal("10.001"),
        weight_oz=None,
        platform_overrides={"mercari": {"category_id": "55", "brand_id": "oops", "zip_code": "10001"}},
    )
    data = m.build_create_input(listing, [])
    assert data["price"] == 1001
    assert data["description"] == "Nike Air Max 90"
    assert data["categoryId"] == 55
    assert data["brandId"] == m.DEFAULT_BRAND_ID
    assert data["zipCode"] == "10001"
    assert data["shippingPackageWeight"] == m.DEFAULT_PACKAGE_WEIGHT_OZ
    assert data["shippingClassIds"] == [2131]
