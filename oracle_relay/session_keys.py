"""Resolution and storage of per-conversation session keys."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, List, Optional

from . import keywrap
from .errors import DecryptionError, KeyResolutionError, PayloadValidationError
from .storage import ContentStore, Tag

LOGGER = logging.getLogger(__name__)

KEY_FILE_CONTENT_TYPE = "application/rofl-key"
KEY_FILE_TAG = "SenseAI-Key-For-Conversation"


def key_file_tags(chain_id: int, conversation_id: int | str) -> List[Tag]:
    return [
        Tag("Content-Type", KEY_FILE_CONTENT_TYPE),
        Tag(KEY_FILE_TAG, f"{chain_id}-{conversation_id}"),
    ]


def _hex_to_key(value: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    try:
        key = bytes.fromhex(text)
    except ValueError as exc:
        raise DecryptionError("Session key is not valid hex") from exc
    if len(key) != 32:
        raise DecryptionError("Session key must be 32 bytes")
    return key


def _wrapped_key_text(encrypted_key: Any) -> Optional[str]:
    """Return the cipher string carried in ``roflEncryptedKey``, if any."""

    if encrypted_key is None:
        return None
    if isinstance(encrypted_key, (bytes, bytearray)):
        if not encrypted_key:
            return None
        try:
            return bytes(encrypted_key).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Encrypted session key is not valid UTF-8") from exc
    text = str(encrypted_key).strip()
    if text in ("", "0x"):
        return None
    if text.startswith("0x"):
        try:
            return bytes.fromhex(text[2:]).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("Encrypted session key is not valid hex text") from exc
    return text


def inline_session_key(payload: Any) -> Optional[str]:
    """Extract ``sessionKey`` from a plaintext request payload."""

    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise PayloadValidationError("Request payload is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise PayloadValidationError("Request payload must be a JSON object")
    value = payload.get("sessionKey")
    return value if isinstance(value, str) and value else None


class SessionKeyResolver:
    """Find the symmetric key protecting a conversation.

    The lookup order is the inline key on a confidential chain, the wrapped
    key that accompanies the request, and finally the key file stored for the
    conversation.
    """

    def __init__(
        self,
        *,
        storage: ContentStore,
        private_key: str,
        is_confidential: bool,
        chain_id: Callable[[], Awaitable[int]],
    ) -> None:
        self._storage = storage
        self._private_key = private_key
        self._is_confidential = is_confidential
        self._chain_id = chain_id
        self._public_key = keywrap.public_key_from_private(private_key)

    @property
    def public_key(self) -> bytes:
        return self._public_key

    async def resolve(self, payload: Any, encrypted_key: Any, conversation_id: int | str) -> bytes:
        if self._is_confidential:
            inline = inline_session_key(payload)
            if inline:
                return _hex_to_key(inline)
        else:
            wrapped = _wrapped_key_text(encrypted_key)
            if wrapped:
                return _hex_to_key(keywrap.decrypt_with_private_key(self._private_key, wrapped))

        chain_id = await self._chain_id()
        address = await self._storage.query_by_tags(key_file_tags(chain_id, conversation_id))
        if not address:
            raise KeyResolutionError(f"No session key found for conversation {conversation_id}")
        LOGGER.debug("Using stored key file %s for conversation %s", address, conversation_id)
        wrapped = (await self._storage.get(address)).decode("utf-8")
        return _hex_to_key(keywrap.decrypt_with_private_key(self._private_key, wrapped))

    async def store_key_file(self, conversation_id: int | str, session_key: bytes, encrypted_key: Any) -> str:
        """Persist the wrapped session key so later requests can find it."""

        wrapped = None if self._is_confidential else _wrapped_key_text(encrypted_key)
        if not wrapped:
            wrapped = keywrap.encrypt_with_public_key(self._public_key, session_key.hex())
        chain_id = await self._chain_id()
        address = await self._storage.put(wrapped.encode("utf-8"), key_file_tags(chain_id, conversation_id))
        LOGGER.info("Stored key file %s for conversation %s", address, conversation_id)
        return address


__all__ = [
    "KEY_FILE_CONTENT_TYPE",
    "KEY_FILE_TAG",
    "SessionKeyResolver",
    "inline_session_key",
    "key_file_tags",
]
