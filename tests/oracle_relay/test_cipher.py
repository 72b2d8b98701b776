from __future__ import annotations

import base64
import os

import pytest

from oracle_relay import cipher, keywrap
from oracle_relay.errors import DecryptionError, FatalError

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def test_envelope_round_trip_preserves_payload() -> None:
    key = os.urandom(32)
    payload = {"promptText": "héllo", "isNewConversation": True, "nested": [1, None, "x"]}

    envelope = cipher.encrypt(payload, key)

    nonce_b64, sealed_b64 = envelope.split(".")
    assert len(base64.b64decode(nonce_b64)) == cipher.NONCE_SIZE
    assert cipher.decrypt(envelope, key) == payload
    assert cipher.decrypt(envelope.encode("utf-8"), key) == payload


def test_envelope_uses_fresh_nonce_per_encryption() -> None:
    key = os.urandom(32)
    assert cipher.encrypt({"a": 1}, key) != cipher.encrypt({"a": 1}, key)


def test_decrypt_with_wrong_key_fails() -> None:
    envelope = cipher.encrypt({"secret": True}, os.urandom(32))
    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope, os.urandom(32))


def test_decrypt_rejects_tampered_ciphertext() -> None:
    key = os.urandom(32)
    nonce_b64, sealed_b64 = cipher.encrypt({"secret": True}, key).split(".")
    sealed = bytearray(base64.b64decode(sealed_b64))
    sealed[0] ^= 0x01
    tampered = nonce_b64 + "." + base64.b64encode(bytes(sealed)).decode("ascii")
    with pytest.raises(DecryptionError):
        cipher.decrypt(tampered, key)


@pytest.mark.parametrize("envelope", ["", "onlyonepart", "a.b.c", "!!!.???"])
def test_decrypt_rejects_malformed_envelopes(envelope: str) -> None:
    with pytest.raises(DecryptionError):
        cipher.decrypt(envelope, os.urandom(32))


def test_decryption_errors_are_fatal() -> None:
    assert issubclass(DecryptionError, FatalError)


def test_key_wrap_round_trip() -> None:
    public_key = keywrap.public_key_from_private(PRIVATE_KEY)
    session_key = os.urandom(32).hex()

    wrapped = keywrap.encrypt_with_public_key(public_key, session_key)

    # iv(16) + compressed ephemeral key(33) + mac(32) + at least one AES block
    assert len(bytes.fromhex(wrapped)) >= 16 + 33 + 32 + 16
    assert keywrap.decrypt_with_private_key(PRIVATE_KEY, wrapped) == session_key


def test_key_wrap_rejects_modified_mac() -> None:
    public_key = keywrap.public_key_from_private(PRIVATE_KEY)
    raw = bytearray(bytes.fromhex(keywrap.encrypt_with_public_key(public_key, "abc")))
    raw[16 + 33] ^= 0xFF
    with pytest.raises(DecryptionError):
        keywrap.decrypt_with_private_key(PRIVATE_KEY, raw.hex())


def test_key_wrap_rejects_other_recipient() -> None:
    other_public = keywrap.public_key_from_private("0x" + "01" * 32)
    wrapped = keywrap.encrypt_with_public_key(other_public, "abc")
    with pytest.raises(DecryptionError):
        keywrap.decrypt_with_private_key(PRIVATE_KEY, wrapped)
