"""ECIES key wrapping on secp256k1, compatible with ``eth-crypto`` ciphers.

A wrapped message is the hex string ``iv(16) || ephemeral public key
(33, compressed) || mac(32) || ciphertext``. The shared ECDH secret is
stretched with SHA-512 into an AES-256-CBC key and an HMAC-SHA256 key; the MAC
covers ``iv || uncompressed ephemeral key || ciphertext``.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .errors import DecryptionError

_CURVE = ec.SECP256K1()
_IV_SIZE = 16
_COMPRESSED_SIZE = 33
_MAC_SIZE = 32


@dataclass(frozen=True)
class SealedMessage:
    iv: bytes
    ephemeral_public_key: bytes
    mac: bytes
    ciphertext: bytes

    def to_hex(self) -> str:
        return (self.iv + self.ephemeral_public_key + self.mac + self.ciphertext).hex()

    @classmethod
    def from_hex(cls, value: str) -> "SealedMessage":
        text = value.strip()
        if text.startswith("0x"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise DecryptionError("Wrapped key is not valid hex") from exc
        header = _IV_SIZE + _COMPRESSED_SIZE + _MAC_SIZE
        if len(raw) <= header:
            raise DecryptionError("Wrapped key is truncated")
        return cls(
            iv=raw[:_IV_SIZE],
            ephemeral_public_key=raw[_IV_SIZE : _IV_SIZE + _COMPRESSED_SIZE],
            mac=raw[_IV_SIZE + _COMPRESSED_SIZE : header],
            ciphertext=raw[header:],
        )


def _private_key(value: str | bytes) -> ec.EllipticCurvePrivateKey:
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return ec.derive_private_key(int.from_bytes(value, "big"), _CURVE)


def _public_key(value: bytes) -> ec.EllipticCurvePublicKey:
    # eth-crypto hands out 64-byte keys without the 0x04 prefix.
    if len(value) == 64:
        value = b"\x04" + value
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, value)
    except ValueError as exc:
        raise DecryptionError("Invalid secp256k1 public key") from exc


def _uncompressed(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def _derive_keys(private: ec.EllipticCurvePrivateKey, public: ec.EllipticCurvePublicKey) -> tuple[bytes, bytes]:
    shared = private.exchange(ec.ECDH(), public)
    digest = hashlib.sha512(shared).digest()
    return digest[:32], digest[32:]


def public_key_from_private(private_key: str | bytes) -> bytes:
    """Return the 64-byte uncompressed public key (no ``0x04`` prefix)."""

    return _uncompressed(_private_key(private_key).public_key())[1:]


def encrypt_with_public_key(public_key: bytes, message: str) -> str:
    """Wrap ``message`` for the holder of ``public_key``."""

    recipient = _public_key(public_key)
    ephemeral = ec.generate_private_key(_CURVE)
    enc_key, mac_key = _derive_keys(ephemeral, recipient)
    iv = os.urandom(_IV_SIZE)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(message.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    ephemeral_public = ephemeral.public_key()
    mac = hmac.new(mac_key, iv + _uncompressed(ephemeral_public) + ciphertext, hashlib.sha256).digest()
    return SealedMessage(
        iv=iv,
        ephemeral_public_key=ephemeral_public.public_bytes(Encoding.X962, PublicFormat.CompressedPoint),
        mac=mac,
        ciphertext=ciphertext,
    ).to_hex()


def decrypt_with_private_key(private_key: str | bytes, cipher: str) -> str:
    """Unwrap a message sealed by :func:`encrypt_with_public_key`."""

    sealed = SealedMessage.from_hex(cipher)
    ephemeral_public = _public_key(sealed.ephemeral_public_key)
    enc_key, mac_key = _derive_keys(_private_key(private_key), ephemeral_public)
    expected = hmac.new(
        mac_key, sealed.iv + _uncompressed(ephemeral_public) + sealed.ciphertext, hashlib.sha256
    ).digest()
    if not hmac.compare_digest(expected, sealed.mac):
        raise DecryptionError("Wrapped key MAC mismatch")
    if len(sealed.ciphertext) % 16:
        raise DecryptionError("Wrapped key ciphertext is not block aligned")
    decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(sealed.iv)).decryptor()
    padded = decryptor.update(sealed.ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecryptionError("Wrapped key padding is invalid") from exc


__all__ = [
    "SealedMessage",
    "decrypt_with_private_key",
    "encrypt_with_public_key",
    "public_key_from_private",
]
