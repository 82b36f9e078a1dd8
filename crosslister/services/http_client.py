from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Literal, Mapping

import httpx


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

RETRYABLE_STATUSES = (408, 425, 429, 500, 502, 503, 504)


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any]

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    content: bytes | None = None
    content_type: str | None = None
    elapsed_ms: int | None = None


def _is_json_response(resp: httpx.Response) -> bool:
    ct = (resp.headers.get("content-type") or "").lower()
    return "application/json" in ct or ct.endswith("+json")


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _transport_failure(code: str, message: str, started: float) -> HttpResult:
    # no response at all: always worth another attempt
    return HttpResult(
        ok=False,
        status_code=None,
        detail={"error": code.lower()},
        error_code=code,
        error_message=message,
        retryable=True,
        elapsed_ms=_elapsed_ms(started),
    )


class CrosslistHttpClient:
    """
    Shared HTTP client for marketplace internal endpoints, image downloads and
    status callbacks.

    - One AsyncClient instance (connection pooling).
    - No retries here; the job queue owns backoff.
    - Returns a structured result with retryable classification instead of raising.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        max_response_body_chars: int = 20_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = httpx.Timeout(timeout_seconds)
        self._max_body = max_response_body_chars
        self._default_headers = dict(default_headers or {})
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport, follow_redirects=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CrosslistHttpClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def request(
        self,
        *,
        method: HttpMethod,
        url: str,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        data: Mapping[str, str] | None = None,
        files: Mapping[str, tuple[str, bytes, str]] | None = None,
        binary: bool = False,
    ) -> HttpResult:
        merged = {**self._default_headers, **dict(headers or {})}

        started = time.monotonic()
        try:
            resp = await self._client.request(
                method=method,
                url=url,
                headers=merged,
                params=dict(params or {}),
                json=json_body,
                data=dict(data) if data is not None else None,
                files=dict(files) if files is not None else None,
            )
        except httpx.TimeoutException as e:
            return _transport_failure("TIMEOUT", str(e) or "request timed out", started)
        except httpx.RequestError as e:
            # DNS, refused connection, TLS
            return _transport_failure("REQUEST_ERROR", str(e) or type(e).__name__, started)
        elapsed_ms = _elapsed_ms(started)

        content_type = resp.headers.get("content-type")
        success = 200 <= resp.status_code < 300
        if binary and success:
            detail: dict[str, Any] = {"bytes": len(resp.content)}
        else:
            detail = self._parse_body(resp, content_type)

        if success:
            return HttpResult(
                ok=True,
                status_code=resp.status_code,
                detail=detail,
                content=resp.content if binary else None,
                content_type=content_type,
                elapsed_ms=elapsed_ms,
            )
        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            retryable=resp.status_code in RETRYABLE_STATUSES,
            content_type=content_type,
            elapsed_ms=elapsed_ms,
        )

    def _parse_body(self, resp: httpx.Response, content_type: str | None) -> dict[str, Any]:
        if _is_json_response(resp):
            try:
                parsed = resp.json()
            except ValueError:
                return {"raw": _cap_text(resp.text, max_chars=self._max_body)}
            return parsed if isinstance(parsed, dict) else {"data": parsed}
        return {"raw": _cap_text(resp.text, max_chars=self._max_body), "content_type": content_type}

    # helpers
    async def get_bytes(self, *, url: str, headers: Mapping[str, str] | None = None) -> HttpResult:
        return await self.request(method="GET", url=url, headers=headers, binary=True)

    async def post_json(self, *, url: str, headers: Mapping[str, str] | None = None, json_body: dict[str, Any] | None = None) -> HttpResult:
        return await self.request(method="POST", url=url, headers=headers, json_body=json_body)

    async def post_multipart(
        self,
        *,
        url: str,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str],
        files: Mapping[str, tuple[str, bytes, str]],
    ) -> HttpResult:
        return await self.request(method="POST", url=url, headers=headers, data=data, files=files)
