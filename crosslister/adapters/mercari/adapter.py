from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from crosslister.adapters.base import CreateResult
from crosslister.adapters.browser_base import BrowserAdapter
from crosslister.adapters.capabilities import AdapterCapabilities
from crosslister.adapters.mercari import mapping as m
from crosslister.adapters.mercari.mapping import S
from crosslister.adapters.mercari.master_data import Brand, configured_brands, find_brand_id
from crosslister.automation.context import ExecutionContext
from crosslister.automation.detectors import detect_challenge, detect_login_state
from crosslister.automation.uploads import fetch_image, upload_images
from crosslister.core.errors import (
    AuthenticationFailure,
    CrosslistError,
    UploadFailure,
    ValidationRejected,
    classify_http_status,
)
from crosslister.core.vault import Credentials
from crosslister.schemas.listing import NormalizedListing
from crosslister.services.http_client import HttpResult
from crosslister.sessions.introspection import decode_jwt_payload, decode_mercari_mwus_cookie, jwt_expiry
from crosslister.sessions.types import AuthMaterial, Identity, Session

log = logging.getLogger(__name__)

_AUTH_HINTS = ("unauthorized", "unauthenticated", "not authenticated", "forbidden", "token", "login")


def _dig(data: Any, *path: str | int) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
            data = data[key]
        elif isinstance(data, dict):
            data = data.get(key)
        else:
            return None
    return data


class MercariAdapter(BrowserAdapter):
    """
    Logs in through the web UI once, then talks to Mercari's internal GraphQL
    API with the bearer/csrf pair recovered from the `_mwus` cookie.
    """
    platform = "mercari"
    display_name = "Mercari"
    login_url = m.LOGIN_URL

    def __init__(self, *, brands: Sequence[Brand] | None = None):
        self._brands = brands

    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            platform=self.platform,
            transport="internal_api",
            max_photos=m.MAX_PHOTOS,
            max_description_chars=m.MAX_DESCRIPTION_CHARS,
        )

    def introspect(self, material: AuthMaterial) -> Identity:
        tokens = decode_mercari_mwus_cookie(material.cookie("_mwus")) or {}
        bearer = tokens.get("bearer") or material.tokens.get("bearer")
        payload = decode_jwt_payload(bearer) or {}
        uid = payload.get("userId") or payload.get("sub")
        return Identity(
            platform_user_id=str(uid) if uid else None,
            tokens=tokens,
            expires_at=jwt_expiry(bearer),
        )

    async def login(self, ctx: ExecutionContext, credentials: Credentials) -> AuthMaterial:
        material = await self.submit_login(
            ctx,
            username=credentials.username,
            password=credentials.password,
            username_selector=S.LOGIN_EMAIL,
            password_selector=S.LOGIN_PASSWORD,
            submit_selector=S.LOGIN_SUBMIT,
            error_selector=S.LOGIN_ERROR,
        )
        if not decode_mercari_mwus_cookie(material.cookie("_mwus")):
            raise AuthenticationFailure("Mercari login did not yield API tokens", detail={"cookie": "_mwus"})
        return material

    async def check_login(self, session: Session, ctx: ExecutionContext) -> bool:
        tokens = self._tokens(session.auth)
        if tokens is None:
            return False
        expires_at = jwt_expiry(tokens[0])
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            log.info("mercari: bearer expired at %s", expires_at.isoformat())
            return False

        # an unexpired bearer can still belong to a session Mercari has revoked
        d = await ctx.driver()
        await d.goto(m.ACCOUNT_URL)
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)
        state = await detect_login_state(
            d,
            positive=S.LOGGED_IN_MARKERS,
            negative=S.LOGGED_OUT_MARKERS,
        )
        return state.logged_in

    def resolve_brand_id(self, listing: NormalizedListing, ctx: ExecutionContext) -> int | None:
        """Mercari brand id for the listing; None leaves the mapping default in place."""
        if listing.overrides_for(self.platform).get("brand_id") is not None or not listing.brand:
            return None
        brands = self._brands if self._brands is not None else configured_brands()
        brand_id = find_brand_id(brands, listing.brand)
        if brand_id is None:
            ctx.warn(f'Brand "{listing.brand}" not found in Mercari brand list; listed under the default brand')
        else:
            log.info("mercari: brand %r -> %d", listing.brand, brand_id)
        return brand_id

    def _tokens(self, auth: AuthMaterial) -> tuple[str, str] | None:
        bearer, csrf = auth.tokens.get("bearer"), auth.tokens.get("csrf")
        if not bearer or not csrf:
            decoded = decode_mercari_mwus_cookie(auth.cookie("_mwus"))
            if not decoded:
                return None
            bearer, csrf = decoded["bearer"], decoded["csrf"]
        return bearer, csrf

    def _headers(self, session: Session) -> dict[str, str]:
        tokens = self._tokens(session.auth)
        if tokens is None:
            raise AuthenticationFailure("Mercari session carries no API tokens")
        return m.api_headers(*tokens)

    def _graphql_data(self, res: HttpResult, *, operation: str) -> dict[str, Any]:
        if not res.ok:
            raise classify_http_status(
                res.status_code,
                retryable=res.retryable,
                message=f"Mercari {operation} failed: {res.error_message}",
            )
        errors = res.detail.get("errors")
        if errors:
            messages = [str(e.get("message") if isinstance(e, dict) else e) for e in errors]
            joined = "; ".join(messages)
            if any(h in joined.lower() for h in _AUTH_HINTS):
                raise AuthenticationFailure(f"Mercari {operation}: {joined}", detail={"errors": messages})
            raise ValidationRejected(f"Mercari {operation}: {joined}", detail={"errors": messages})
        return res.detail.get("data") or {}

    async def create_listing(self, session: Session, listing: NormalizedListing, ctx: ExecutionContext) -> CreateResult:
        headers = self._headers(session)

        async def _upload(index: int, url: str) -> str:
            return await self._upload_photo(ctx, headers, index=index, url=url)

        report = await upload_images(listing.images, limit=m.MAX_PHOTOS, upload_one=_upload, warn=ctx.warn)

        brand_id = self.resolve_brand_id(listing, ctx)
        create_input = m.build_create_input(listing, report.uploaded, brand_id=brand_id)
        body = m.persisted("createListing", m.CREATE_LISTING_HASH, {"input": create_input})
        res = await ctx.http.post_json(url=m.API_URL, headers=headers, json_body=body)
        data = self._graphql_data(res, operation="createListing")

        item_id = _dig(data, "createListing", "id")
        if not item_id:
            raise ValidationRejected("Mercari accepted the listing but returned no id", detail={"response": res.detail})

        log.info("mercari: created item %s with %d photos", item_id, report.succeeded)
        return CreateResult(
            platform_listing_id=str(item_id),
            platform_url=m.ITEM_URL.format(item_id=item_id),
            detail={"photos_uploaded": report.succeeded, "photos_attempted": report.attempted},
        )

    async def _upload_photo(self, ctx: ExecutionContext, headers: dict[str, str], *, index: int, url: str) -> str:
        blob = await fetch_image(ctx.http, url, index=index)
        operations = m.persisted("uploadTempListingPhotos", m.UPLOAD_PHOTOS_HASH, {"input": {"photos": [None]}})
        res = await ctx.http.post_multipart(
            url=m.API_URL,
            headers=headers,
            data={
                "operations": json.dumps(operations),
                "map": json.dumps({"1": ["variables.input.photos.0"]}),
            },
            files={"1": (blob.filename, blob.data, blob.mime_type)},
        )
        try:
            data = self._graphql_data(res, operation="uploadTempListingPhotos")
        except ValidationRejected as e:
            raise UploadFailure(e.message, detail={"url": url, **e.detail}) from None

        upload_id = _dig(data, "uploadTempListingPhotos", "uploadIds", 0)
        if not upload_id:
            raise UploadFailure("Mercari upload response missing uploadId", detail={"url": url})
        return str(upload_id)

    async def delete_listing(self, session: Session, platform_listing_id: str, ctx: ExecutionContext) -> None:
        headers = self._headers(session)
        body = m.persisted(
            "UpdateItemStatusMutation",
            m.UPDATE_ITEM_STATUS_HASH,
            {"input": {"id": platform_listing_id, "status": "cancel"}},
        )
        res = await ctx.http.post_json(url=m.API_URL, headers=headers, json_body=body)
        try:
            self._graphql_data(res, operation="UpdateItemStatusMutation")
        except CrosslistError as e:
            if res.status_code == 404:
                log.info("mercari: item %s already gone", platform_listing_id)
                return
            raise
        log.info("mercari: cancelled item %s", platform_listing_id)
