from __future__ import annotations

import logging
from typing import Sequence

from crosslister.automation.context import ExecutionContext
from crosslister.automation.detectors import detect_challenge
from crosslister.automation.driver import PageDriver
from crosslister.automation.timing import essential_delay
from crosslister.automation.uploads import fetch_image
from crosslister.core.errors import (
    VERIFICATION_MESSAGE,
    AuthenticationFailure,
    ElementNotFound,
    OperationTimeout,
    UploadFailure,
    ValidationRejected,
    VerificationRequired,
)
from crosslister.sessions.types import AuthMaterial

log = logging.getLogger(__name__)


class BrowserAdapter:
    """
    Shared steps for marketplaces driven through their web UI.
    """
    platform: str
    display_name: str
    login_url: str
    login_fragments: Sequence[str] = ("/login",)

    def verification_required(self, signal: str) -> VerificationRequired:
        return VerificationRequired(
            VERIFICATION_MESSAGE.format(platform=self.display_name),
            detail={"signal": signal},
        )

    async def guard(self, d: PageDriver) -> None:
        """Raise if the page is a step-up challenge or bounced us to login."""
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)
        url = (d.url or "").lower()
        if any(f in url for f in self.login_fragments):
            raise AuthenticationFailure(f"{self.display_name} session is not logged in", detail={"url": d.url})

    async def raise_form_errors(self, d: PageDriver, selector: str) -> None:
        errors = [t for t in [((await el.inner_text()) or "").strip() for el in await d.query_all(selector)] if t]
        if errors:
            raise ValidationRejected(
                f"{self.display_name} rejected the listing: " + "; ".join(errors[:5]),
                detail={"errors": errors},
            )

    async def submit_login(
        self,
        ctx: ExecutionContext,
        *,
        username: str,
        password: str,
        username_selector: str,
        password_selector: str,
        submit_selector: str,
        error_selector: str,
    ) -> AuthMaterial:
        d = await ctx.driver()
        await d.goto(self.login_url)
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)

        await d.fill(username_selector, username, field="username")
        await d.fill(password_selector, password, field="password")
        await d.click(submit_selector, field="login_submit")

        try:
            await d.wait_for_url(r"^(?!.*/login).*$")
        except OperationTimeout:
            challenge = await detect_challenge(d)
            if challenge:
                raise self.verification_required(challenge) from None
            message = await d.text_of(error_selector)
            raise AuthenticationFailure(message or f"{self.display_name} rejected the credentials") from None

        # the landing page after login can itself be a device check
        challenge = await detect_challenge(d)
        if challenge:
            raise self.verification_required(challenge)

        log.info("%s: login succeeded", self.platform)
        return AuthMaterial(cookies=await ctx.export_cookies())

    async def inject_photo(
        self,
        ctx: ExecutionContext,
        d: PageDriver,
        *,
        index: int,
        url: str,
        input_selector: str,
    ) -> str:
        blob = await fetch_image(ctx.http, url, index=index)
        file_input = await d.wait_for_element(input_selector, field="photos")
        count = await d.upload_file(file_input, blob.data, blob.filename, blob.mime_type)
        if count < 1:
            raise UploadFailure(f"{self.display_name} did not accept {blob.filename}", detail={"url": url})
        # server-side processing of the photo
        await essential_delay(800, 1500)
        return blob.filename

    async def click_if_present(self, d: PageDriver, selector: str, *, timeout_ms: int = 3000) -> bool:
        try:
            el = await d.wait_for_element(selector, timeout_ms=timeout_ms)
        except ElementNotFound:
            return False
        await d.click_element(el)
        return True
