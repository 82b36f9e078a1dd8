from __future__ import annotations

import logging

from crosslister.adapters.base import CreateResult
from crosslister.adapters.browser_base import BrowserAdapter
from crosslister.adapters.capabilities import AdapterCapabilities
from crosslister.adapters.poshmark import mapping as m
from crosslister.adapters.poshmark.mapping import S
from crosslister.adapters.pricing import ceil_whole_units
from crosslister.adapters.selection import ensure_path_selected, ensure_selected, matches_label, optional_step
from crosslister.automation.context import ExecutionContext
from crosslister.automation.detectors import detect_challenge, detect_login_state
from crosslister.automation.driver import PageDriver
from crosslister.automation.uploads import upload_images
from crosslister.core.errors import OperationTimeout, ValidationRejected
from crosslister.core.vault import Credentials
from crosslister.schemas.listing import NormalizedListing
from crosslister.sessions.introspection import decode_poshmark_jwt_cookie, decode_poshmark_ui_cookie, jwt_expiry
from crosslister.sessions.types import AuthMaterial, Identity, Session

log = logging.getLogger(__name__)


class PoshmarkAdapter(BrowserAdapter):
    platform = "poshmark"
    display_name = "Poshmark"
    login_url = m.LOGIN_URL

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            platform=self.platform,
            transport="browser",
            max_photos=m.MAX_PHOTOS,
            max_description_chars=m.MAX_DESCRIPTION_CHARS,
        )

    def introspect(self, material: AuthMaterial) -> Identity:
        uid = decode_poshmark_ui_cookie(material.cookie("ui")) or decode_poshmark_jwt_cookie(material.cookie("jwt"))
        return Identity(platform_user_id=uid, expires_at=jwt_expiry(material.cookie("jwt")))

    async def login(self, ctx: ExecutionContext, credentials: Credentials) -> AuthMaterial:
        return await self.submit_login(
            ctx,
            username=credentials.username,
            password=credentials.password,
            username_selector=S.LOGIN_USERNAME,
            password_selector=S.LOGIN_PASSWORD,
            submit_selector=S.LOGIN_SUBMIT,
            error_selector=S.LOGIN_ERROR,
        )

    async def check_login(self, session: Session, ctx: ExecutionContext) -> bool:
        d = await ctx.driver()
        await d.goto(m.FEED_URL)
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)
        state = await detect_login_state(
            d,
            positive=S.LOGGED_IN_MARKERS,
            negative=S.LOGGED_OUT_MARKERS,
            positive_url_fragments=("/feed",),
        )
        return state.logged_in

    async def create_listing(self, session: Session, listing: NormalizedListing, ctx: ExecutionContext) -> CreateResult:
        d = await ctx.driver()
        await d.goto(m.CREATE_URL)
        await self.guard(d)

        # 1. photos (first = cover)
        async def _upload(index: int, url: str) -> str:
            name = await self.inject_photo(ctx, d, index=index, url=url, input_selector=S.PHOTO_INPUT)
            # crop dialog shows up for each photo
            await self.click_if_present(d, S.PHOTO_APPLY)
            return name

        report = await upload_images(listing.images, limit=m.MAX_PHOTOS, upload_one=_upload, warn=ctx.warn)

        # 2-3. required text fields
        await d.fill(S.TITLE, listing.title[: m.MAX_TITLE_CHARS], field="title")
        description = (listing.description or listing.title)[: m.MAX_DESCRIPTION_CHARS]
        await d.fill(S.DESCRIPTION, description, field="description")

        # 4. category before size: size options depend on it
        path = listing.category_path(self.platform)
        if path:
            await self.select_category(d, path)

        # 5-9. optional attributes
        size = m.map_size(listing)
        if size:
            await optional_step("size", self.select_size(d, size), warn=ctx.warn)

        colors = m.map_colors(listing)
        if colors:
            await optional_step("colors", self._select_colors(d, colors), warn=ctx.warn)

        await optional_step("condition", self._select_condition(d, listing), warn=ctx.warn)

        if listing.quantity > 1:
            await optional_step("quantity", self._set_quantity(d, listing.quantity), warn=ctx.warn)

        original = listing.original_price or listing.overrides_for(self.platform).get("original_price")
        if original:
            await optional_step(
                "original_price",
                d.fill(S.ORIGINAL_PRICE, str(ceil_whole_units(original)), field="original_price"),
                warn=ctx.warn,
            )

        # 10. listing price, whole dollars rounded up
        await d.fill(S.LISTING_PRICE, str(ceil_whole_units(listing.price)), field="price")

        # 11. submit
        return await self._submit(d, photos_uploaded=report.succeeded, photos_attempted=report.attempted)

    async def select_category(self, d: PageDriver, path: list[str]) -> bool:
        return await ensure_path_selected(
            d,
            field="category",
            path=path,
            open_selector=S.CATEGORY_OPEN,
            option_selector=S.CATEGORY_OPTION,
            current_selector=S.CATEGORY_CURRENT,
        )

    async def select_size(self, d: PageDriver, size: str) -> bool:
        return await ensure_selected(
            d,
            field="size",
            label=size,
            open_selector=S.SIZE_OPEN,
            option_selector=S.SIZE_OPTION,
            current_selector=S.SIZE_OPEN,
        )

    async def _select_colors(self, d: PageDriver, colors: list[str]) -> None:
        current = (await d.text_of(S.COLOR_OPEN)) or ""
        if all(c.casefold() in current.casefold() for c in colors):
            return
        await d.click(S.COLOR_OPEN, field="colors")
        await d.wait_for_element(S.COLOR_TILE, field="colors")
        for color in colors:
            if await d.click_option_by_text(S.COLOR_TILE, color) is None:
                log.info("poshmark: color %r not offered", color)
        await self.click_if_present(d, S.COLOR_DONE)

    async def _select_condition(self, d: PageDriver, listing: NormalizedListing) -> None:
        if m.is_new_with_tags(listing):
            await d.click(S.NWT_YES, field="condition")
            return
        if await d.query(S.NWT_NO) is not None:
            await d.click(S.NWT_NO, field="condition")
        _, label = m.condition_for(listing)
        current = await d.text_of(S.CONDITION_OPEN)
        if matches_label(current, label):
            return
        await ensure_selected(
            d,
            field="condition",
            label=label,
            open_selector=S.CONDITION_OPEN,
            option_selector=S.CONDITION_OPTION,
        )

    async def _set_quantity(self, d: PageDriver, quantity: int) -> None:
        await d.click(S.QUANTITY_MULTIPLE, field="quantity")
        await d.fill(S.QUANTITY, str(quantity), field="quantity")

    async def _submit(self, d: PageDriver, *, photos_uploaded: int, photos_attempted: int) -> CreateResult:
        await d.click(S.NEXT, field="submit")
        await self.raise_form_errors(d, S.FORM_ERROR)
        # confirmation step is skipped for some accounts
        await self.click_if_present(d, S.LIST, timeout_ms=d.timing.element_timeout_ms)

        try:
            url = await d.wait_for_url(r"/listing/|/feed|/closet/")
        except OperationTimeout:
            await self.raise_form_errors(d, S.FORM_ERROR)
            await self.guard(d)
            raise

        listing_id = m.listing_id_from_url(url)
        detail = {"photos_uploaded": photos_uploaded, "photos_attempted": photos_attempted, "landing_url": url}
        if listing_id:
            return CreateResult(
                platform_listing_id=listing_id,
                platform_url=m.LISTING_URL.format(listing_id=listing_id),
                detail=detail,
            )
        # redirected to the feed/closet: listed, but the id is not exposed in the URL
        log.info("poshmark: listed without an id in the landing url %s", url)
        return CreateResult(platform_listing_id=None, platform_url=None, detail=detail)

    async def delete_listing(self, session: Session, platform_listing_id: str, ctx: ExecutionContext) -> None:
        d = await ctx.driver()
        await d.goto(m.EDIT_URL.format(listing_id=platform_listing_id))
        await self.guard(d)

        if await d.query(S.NOT_FOUND) is not None:
            log.info("poshmark: listing %s already gone", platform_listing_id)
            return

        await d.click(S.DELETE, field="delete")
        await d.click(S.DELETE_CONFIRM, field="delete_confirm")
        try:
            await d.wait_for_url(r"/closet/|/feed")
        except OperationTimeout:
            await self.raise_form_errors(d, S.FORM_ERROR)
            raise ValidationRejected(f"Poshmark did not confirm deletion of {platform_listing_id}") from None
