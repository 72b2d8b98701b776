"""Reconstruct conversation context by walking message back-links."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .storage import ContentStore, fetch_and_decrypt

LOGGER = logging.getLogger(__name__)


class HistoryWalker:
    """Follow ``parentCID`` links from a message towards the conversation root."""

    def __init__(self, storage: ContentStore, *, limit: int = 20) -> None:
        self._storage = storage
        self._limit = limit

    async def walk(self, start_address: Optional[str], session_key: bytes) -> List[Dict[str, str]]:
        """Return up to ``limit`` turns, oldest first.

        A fetch or decrypt failure ends the walk early and the turns gathered so
        far are returned; a truncated context is preferable to no answer.
        """

        history: List[Dict[str, str]] = []
        address = start_address
        while address and len(history) < self._limit:
            try:
                message = await fetch_and_decrypt(self._storage, address, session_key)
            except Exception as exc:
                LOGGER.warning(
                    "History walk stopped at %s after %d message(s): %s",
                    address,
                    len(history),
                    exc,
                )
                break
            if not isinstance(message, dict):
                LOGGER.warning("History walk stopped at %s: message is not an object", address)
                break
            history.insert(0, {"role": str(message.get("role", "")), "content": str(message.get("content", ""))})
            address = message.get("parentCID") or None
        return history


__all__ = ["HistoryWalker"]
