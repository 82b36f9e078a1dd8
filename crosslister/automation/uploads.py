from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Sequence, TypeVar
from urllib.parse import urlparse

from crosslister.core.errors import ElementNotFound, NetworkError, UploadFailure, classify_http_status
from crosslister.services.http_client import CrosslistHttpClient

log = logging.getLogger(__name__)

T = TypeVar("T")

# per-image failures the upload step continues past
PER_IMAGE_ERRORS = (UploadFailure, NetworkError, ElementNotFound)


@dataclass(frozen=True)
class ImageBlob:
    data: bytes
    filename: str
    mime_type: str


@dataclass
class UploadReport(Generic[T]):
    attempted: int
    uploaded: list[T] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.uploaded)


async def fetch_image(http: CrosslistHttpClient, url: str, *, index: int = 0) -> ImageBlob:
    res = await http.get_bytes(url=url)
    if not res.ok or not res.content:
        err = classify_http_status(res.status_code, retryable=res.retryable, message=f"Image download failed: {res.error_message or 'empty body'}")
        # a broken image reference is an upload problem, not an auth one
        if isinstance(err, NetworkError):
            raise err
        raise UploadFailure(err.message, detail={"url": url, "status_code": res.status_code})

    mime = (res.content_type or "").split(";")[0].strip().lower()
    if not mime.startswith("image/"):
        mime = mimetypes.guess_type(urlparse(url).path)[0] or "image/jpeg"
    ext = mimetypes.guess_extension(mime) or ".jpg"
    if ext == ".jpe":
        ext = ".jpg"
    return ImageBlob(data=res.content, filename=f"photo_{index + 1}{ext}", mime_type=mime)


async def upload_images(
    images: Sequence[str],
    *,
    limit: int,
    upload_one: Callable[[int, str], Awaitable[T]],
    warn: Callable[[str], None],
) -> UploadReport[T]:
    """
    Attempts min(len(images), limit) uploads in order.

    Individual failures are recorded as warnings and skipped; the step fails
    only when nothing at all was uploaded.
    """
    targets = list(images)[: max(0, limit)]
    report: UploadReport[T] = UploadReport(attempted=len(targets))

    if len(images) > limit:
        log.info("upload: %d images supplied, platform accepts %d", len(images), limit)

    for index, url in enumerate(targets):
        try:
            report.uploaded.append(await upload_one(index, url))
        except PER_IMAGE_ERRORS as e:
            report.failures.append({"index": index, "url": url, "code": e.code, "message": e.message})
            warn(f"Image {index + 1} of {len(targets)} failed to upload: {e.message}")

    if targets and not report.uploaded:
        raise UploadFailure(
            f"None of {len(targets)} images could be uploaded",
            detail={"failures": report.failures},
        )
    return report
