"""
Credential vault.

Marketplace credentials arrive as an AES-256-GCM blob serialized as
``nonce:tag:ciphertext`` (lowercase hex). Plaintext only exists inside the
session login path; nothing here logs or persists it.
"""
from __future__ import annotations

import binascii
import json
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crosslister.core.config import settings
from crosslister.core.errors import DecryptionError

KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='**********')"


def load_key(hex_key: str) -> bytes:
    try:
        key = bytes.fromhex(hex_key.strip())
    except ValueError as e:
        raise DecryptionError("Encryption key is not valid hex") from e
    if len(key) != KEY_BYTES:
        raise DecryptionError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")
    return key


def default_key() -> bytes:
    return load_key(settings.credentials_encryption_key.get_secret_value())


def encrypt_credentials(credentials: Credentials, key: bytes) -> str:
    if len(key) != KEY_BYTES:
        raise DecryptionError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")

    raw = json.dumps(
        {"username": credentials.username, "password": credentials.password},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, raw, None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_credentials(blob: str, key: bytes) -> Credentials:
    if len(key) != KEY_BYTES:
        raise DecryptionError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")

    parts = (blob or "").split(":")
    if len(parts) != 3:
        raise DecryptionError("Credential blob must have exactly 3 segments")

    try:
        nonce, tag, ciphertext = (binascii.unhexlify(p) for p in parts)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Credential blob is not valid hex") from e

    if len(tag) != TAG_BYTES:
        raise DecryptionError("Credential blob has a malformed auth tag")
    if not 8 <= len(nonce) <= 128:
        raise DecryptionError("Credential blob has a malformed nonce")

    try:
        raw = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError("Credential blob failed authentication") from e

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecryptionError("Credential payload is not JSON") from e

    username = data.get("username") if isinstance(data, dict) else None
    password = data.get("password") if isinstance(data, dict) else None
    if not isinstance(username, str) or not isinstance(password, str):
        raise DecryptionError("Credential payload must contain username and password")

    return Credentials(username=username, password=password)
