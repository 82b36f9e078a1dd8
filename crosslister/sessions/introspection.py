"""
Credential introspection.

Marketplaces stash user ids and API tokens inside opaque cookie payloads
(URL-encoded JSON, base64 JSON, JWTs). Their shape is undocumented and can
change without notice, so every decoder returns None on anything unexpected
instead of raising.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote

import jwt

log = logging.getLogger(__name__)


def _b64decode(segment: str) -> bytes | None:
    s = segment.strip()
    s += "=" * (-len(s) % 4)
    try:
        return base64.urlsafe_b64decode(s.replace("+", "-").replace("/", "_"))
    except (binascii.Error, ValueError):
        return None


def _json_obj(raw: bytes | str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def decode_jwt_payload(token: str | None) -> dict[str, Any] | None:
    """Claims of a marketplace-issued JWT, read without signature verification."""
    if not token:
        return None
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        log.debug("introspection: unreadable jwt (%s)", e)
        return None


def jwt_expiry(token: str | None) -> datetime | None:
    payload = decode_jwt_payload(token)
    exp = payload.get("exp") if payload else None
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def decode_poshmark_ui_cookie(value: str | None) -> str | None:
    """`ui` cookie: URL-encoded JSON with the closet owner's `uid`."""
    if not value:
        return None
    data = _json_obj(unquote(value))
    uid = data.get("uid") if data else None
    return str(uid) if uid else None


def decode_poshmark_jwt_cookie(value: str | None) -> str | None:
    payload = decode_jwt_payload(value)
    uid = payload.get("user_id") if payload else None
    return str(uid) if uid else None


def decode_mercari_mwus_cookie(value: str | None) -> dict[str, str] | None:
    """`_mwus` cookie: base64 JSON carrying `accessToken` and `csrfSecret`."""
    if not value:
        return None
    data = _json_obj(_b64decode(unquote(value)))
    if not data:
        log.info("introspection: _mwus cookie is not base64 JSON")
        return None
    access, csrf = data.get("accessToken"), data.get("csrfSecret")
    if not isinstance(access, str) or not isinstance(csrf, str) or not access or not csrf:
        log.info("introspection: _mwus cookie lacks accessToken/csrfSecret (keys=%s)", sorted(data))
        return None
    return {"bearer": access, "csrf": csrf}
