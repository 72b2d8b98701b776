"""Authenticated symmetric envelope for conversation content.

Envelopes are ``base64(nonce) "." base64(ciphertext || tag)`` produced with
AES-256-GCM, a 12-byte nonce and a 16-byte tag. The plaintext is the JSON
encoding of the payload object.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
_DELIMITER = "."


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise DecryptionError(f"Session key must be {KEY_SIZE} bytes")


def encrypt(payload: Any, key: bytes) -> str:
    """Encrypt ``payload`` under ``key`` and return the text envelope."""

    _check_key(key)
    nonce = os.urandom(NONCE_SIZE)
    plaintext = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    sealed = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)
    return (
        base64.b64encode(nonce).decode("ascii")
        + _DELIMITER
        + base64.b64encode(sealed).decode("ascii")
    )


def decrypt(envelope: str | bytes, key: bytes) -> Any:
    """Open an envelope produced by :func:`encrypt`.

    Raises :class:`DecryptionError` on a malformed envelope, a wrong key, a
    tampered ciphertext or a plaintext that is not JSON.
    """

    _check_key(key)
    if isinstance(envelope, (bytes, bytearray)):
        try:
            envelope = bytes(envelope).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Encrypted data is not valid UTF-8") from exc
    parts = envelope.strip().split(_DELIMITER)
    if len(parts) != 2:
        raise DecryptionError("Invalid encrypted data format: expected nonce and ciphertext")
    try:
        nonce = base64.b64decode(parts[0], validate=True)
        sealed = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Invalid encrypted data format: bad base64") from exc
    if len(nonce) != NONCE_SIZE or len(sealed) < TAG_SIZE:
        raise DecryptionError("Invalid encrypted data format: truncated envelope")
    try:
        plaintext = AESGCM(bytes(key)).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise DecryptionError("Envelope authentication failed") from exc
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError("Decrypted payload is not JSON") from exc


__all__ = ["KEY_SIZE", "NONCE_SIZE", "TAG_SIZE", "decrypt", "encrypt"]
