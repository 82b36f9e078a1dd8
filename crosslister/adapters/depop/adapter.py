from __future__ import annotations

import logging

from crosslister.adapters.base import CreateResult
from crosslister.adapters.browser_base import BrowserAdapter
from crosslister.adapters.capabilities import AdapterCapabilities
from crosslister.adapters.depop import mapping as m
from crosslister.adapters.depop.mapping import S
from crosslister.adapters.selection import matches_label, optional_step
from crosslister.automation.context import ExecutionContext
from crosslister.automation.detectors import detect_challenge, detect_login_state
from crosslister.automation.driver import PageDriver
from crosslister.automation.timing import essential_delay
from crosslister.automation.uploads import upload_images
from crosslister.core.errors import OperationTimeout, ValidationRejected
from crosslister.core.vault import Credentials
from crosslister.schemas.listing import NormalizedListing
from crosslister.sessions.types import AuthMaterial, Identity, Session

log = logging.getLogger(__name__)


class DepopAdapter(BrowserAdapter):
    platform = "depop"
    display_name = "Depop"
    login_url = m.LOGIN_URL

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            platform=self.platform,
            transport="browser",
            max_photos=m.MAX_PHOTOS,
            requires_title=False,
            max_description_chars=m.MAX_DESCRIPTION_CHARS,
        )

    def introspect(self, material: AuthMaterial) -> Identity:
        uid = material.cookie("user_id") or material.cookie("depop_user_id")
        return Identity(platform_user_id=uid)

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
        await d.goto(m.CREATE_URL)
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)
        state = await detect_login_state(
            d,
            positive=(*S.LOGGED_IN_MARKERS, S.PHOTO_INPUT),
            negative=S.LOGGED_OUT_MARKERS,
            positive_url_fragments=("/products/create",),
        )
        return state.logged_in

    async def create_listing(self, session: Session, listing: NormalizedListing, ctx: ExecutionContext) -> CreateResult:
        d = await ctx.driver()
        await d.goto(m.CREATE_URL)
        await self.guard(d)

        async def _upload(index: int, url: str) -> str:
            return await self.inject_photo(ctx, d, index=index, url=url, input_selector=S.PHOTO_INPUT)

        report = await upload_images(listing.images, limit=m.MAX_PHOTOS, upload_one=_upload, warn=ctx.warn)

        await d.fill(S.DESCRIPTION, m.description_text(listing), field="description")

        # category is required; product type refines it
        path = listing.category_path(self.platform)
        if path:
            await self.combobox(d, field="category", label=path[0], input_selector=S.CATEGORY, option_selector=S.CATEGORY_OPTION)
            if len(path) > 1:
                await essential_delay(300, 600)
                await optional_step(
                    "product_type",
                    self.combobox(d, field="product_type", label=path[1], input_selector=S.PRODUCT_TYPE, option_selector=S.PRODUCT_TYPE_OPTION),
                    warn=ctx.warn,
                )

        await optional_step("brand", self._fill_brand(d, listing.brand), warn=ctx.warn)

        size = listing.overrides_for(self.platform).get("size") or listing.size
        if size:
            await optional_step(
                "size",
                self.combobox(d, field="size", label=str(size), input_selector=S.SIZE, option_selector=S.SIZE_OPTION),
                warn=ctx.warn,
            )

        color = m.primary_color(listing)
        if color:
            await optional_step(
                "color",
                self.combobox(d, field="color", label=color, input_selector=S.COLOR, option_selector=S.COLOR_OPTION),
                warn=ctx.warn,
            )

        await self.combobox(
            d,
            field="condition",
            label=m.condition_label(listing),
            input_selector=S.CONDITION,
            option_selector=S.CONDITION_OPTION,
        )

        await d.fill(S.PRICE, m.price_text(listing), field="price")

        await self.combobox(
            d,
            field="parcel_size",
            label=m.parcel_size(listing.weight_oz),
            input_selector=S.PARCEL,
            option_selector=S.PARCEL_OPTION,
        )

        return await self._submit(d, photos_uploaded=report.succeeded, photos_attempted=report.attempted)

    async def combobox(
        self,
        d: PageDriver,
        *,
        field: str,
        label: str,
        input_selector: str,
        option_selector: str,
    ) -> bool:
        """Pick `label` in a Depop combobox unless it already shows it."""
        box = await d.wait_for_element(input_selector, field=field)
        if matches_label(await d.value_of(box), label):
            return False
        await d.click_element(box)
        await d.wait_for_element(option_selector, field=field)
        chosen = await d.click_option_by_text(option_selector, label)
        if chosen is None:
            raise ValidationRejected(f"No '{label}' option available for {field}", field=field)
        log.info("depop: %s -> %r", field, chosen)
        return True

    async def _fill_brand(self, d: PageDriver, brand: str | None) -> None:
        wanted = brand or m.NO_BRAND
        box = await d.wait_for_element(S.BRAND, field="brand")
        if matches_label(await d.value_of(box), wanted):
            return
        # typing filters the menu
        await d.type_text(box, wanted)
        await d.wait_for_element(S.BRAND_OPTION, field="brand")
        if await d.click_option_by_text(S.BRAND_OPTION, wanted) is None:
            raise ValidationRejected(f"Brand '{wanted}' is not offered", field="brand")

    async def _submit(self, d: PageDriver, *, photos_uploaded: int, photos_attempted: int) -> CreateResult:
        await d.click(S.SUBMIT, field="submit")
        try:
            url = await d.wait_for_url(r"/products/(?!create)[a-zA-Z0-9_-]+")
        except OperationTimeout:
            await self.raise_form_errors(d, S.FORM_ERROR)
            await self.guard(d)
            raise

        detail = {"photos_uploaded": photos_uploaded, "photos_attempted": photos_attempted, "landing_url": url}
        product_id = m.product_id_from_url(url)
        if not product_id:
            log.info("depop: listed without an id in the landing url %s", url)
            return CreateResult(platform_listing_id=None, platform_url=None, detail=detail)
        return CreateResult(
            platform_listing_id=product_id,
            platform_url=m.PRODUCT_URL.format(product_id=product_id),
            detail=detail,
        )

    async def delete_listing(self, session: Session, platform_listing_id: str, ctx: ExecutionContext) -> None:
        d = await ctx.driver()
        await d.goto(m.EDIT_URL.format(product_id=platform_listing_id))
        await self.guard(d)

        if await d.query(S.NOT_FOUND) is not None:
            log.info("depop: product %s already gone", platform_listing_id)
            return

        await d.click(S.DELETE, field="delete")
        await d.click(S.DELETE_CONFIRM, field="delete_confirm")
        try:
            await d.wait_for_url(r"^(?!.*/products/edit/).*$")
        except OperationTimeout:
            await self.raise_form_errors(d, S.FORM_ERROR)
            raise ValidationRejected(f"Depop did not confirm deletion of {platform_listing_id}") from None
