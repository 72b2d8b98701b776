"""Content-addressed storage backends and encrypted upload helpers."""

from __future__ import annotations

import base64
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from . import cipher
from .errors import StorageError

LOGGER = logging.getLogger(__name__)

_ARWEAVE_ID = re.compile(r"^[A-Za-z0-9_-]{43,50}$")

_TAG_QUERY = """
query ($tags: [TagFilter!]) {
  transactions(tags: $tags, first: 1, sort: HEIGHT_DESC) {
    edges { node { id } }
  }
}
"""


@dataclass(frozen=True)
class Tag:
    name: str
    value: str

    def to_json(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value}


def is_arweave_id(address: str) -> bool:
    return bool(_ARWEAVE_ID.match(address or ""))


class ContentStore:
    """Abstract storage backend addressed by opaque content identifiers."""

    async def put(self, data: bytes, tags: Sequence[Tag] = ()) -> str:
        raise NotImplementedError

    async def get(self, address: str) -> bytes:
        raise NotImplementedError

    async def query_by_tags(self, tags: Sequence[Tag]) -> Optional[str]:
        raise NotImplementedError


class MemoryContentStore(ContentStore):
    """Process-local store used for development runs and tests."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._tags: Dict[str, Tuple[Tag, ...]] = {}
        self._order: List[str] = []

    async def put(self, data: bytes, tags: Sequence[Tag] = ()) -> str:
        digest = hashlib.sha256(bytes(data) + str(len(self._order)).encode("ascii")).digest()
        address = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        self._blobs[address] = bytes(data)
        self._tags[address] = tuple(tags)
        self._order.append(address)
        return address

    async def get(self, address: str) -> bytes:
        try:
            return self._blobs[address]
        except KeyError as exc:
            raise StorageError(f"storage object {address} not found", status=404) from exc

    async def query_by_tags(self, tags: Sequence[Tag]) -> Optional[str]:
        wanted = set(tags)
        for address in reversed(self._order):
            if wanted.issubset(self._tags[address]):
                return address
        return None

    def tags_for(self, address: str) -> Tuple[Tag, ...]:
        return self._tags.get(address, ())

    def __len__(self) -> int:
        return len(self._blobs)


class ArweaveContentStore(ContentStore):
    """Arweave-compatible backend reached over HTTP.

    Uploads go to a bundler endpoint that accepts base64 data plus tags and
    answers with the transaction id. Reads go through a gateway, tag lookups
    through the Arweave GraphQL endpoint.
    """

    def __init__(
        self,
        *,
        upload_url: str,
        gateway_url: str,
        graphql_url: str,
        token: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._upload_url = upload_url
        self._gateway_url = gateway_url.rstrip("/")
        self._graphql_url = graphql_url
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        return httpx.AsyncClient(timeout=self._timeout, headers=headers, transport=self._transport)

    async def put(self, data: bytes, tags: Sequence[Tag] = ()) -> str:
        all_tags = list(tags)
        if not any(tag.name == "Content-Type" for tag in all_tags):
            all_tags.insert(0, Tag("Content-Type", "application/octet-stream"))
        body = {
            "data": base64.b64encode(bytes(data)).decode("ascii"),
            "tags": [tag.to_json() for tag in all_tags],
        }
        try:
            async with self._client() as client:
                response = await client.post(self._upload_url, json=body)
        except httpx.HTTPError as exc:
            raise StorageError(f"storage upload failed: {exc}") from exc
        if response.status_code not in (200, 201):
            raise StorageError(
                f"storage upload failed: {response.status_code} {response.text[:200]}",
                status=response.status_code,
            )
        address = (response.json() or {}).get("id")
        if not address:
            raise StorageError("storage upload response is missing an id")
        LOGGER.debug("Uploaded %d bytes to %s/%s", len(data), self._gateway_url, address)
        return str(address)

    async def get(self, address: str) -> bytes:
        if not is_arweave_id(address):
            raise StorageError(f"storage address {address!r} is not an Arweave id", status=400)
        try:
            async with self._client() as client:
                response = await client.get(f"{self._gateway_url}/{address}")
        except httpx.HTTPError as exc:
            raise StorageError(f"storage fetch failed for {address}: {exc}") from exc
        if response.status_code != 200:
            raise StorageError(
                f"storage fetch failed for {address}: {response.status_code}",
                status=response.status_code,
            )
        return response.content

    async def query_by_tags(self, tags: Sequence[Tag]) -> Optional[str]:
        variables = {"tags": [{"name": tag.name, "values": [tag.value]} for tag in tags]}
        try:
            async with self._client() as client:
                response = await client.post(self._graphql_url, json={"query": _TAG_QUERY, "variables": variables})
        except httpx.HTTPError as exc:
            raise StorageError(f"storage tag query failed: {exc}") from exc
        if response.status_code != 200:
            raise StorageError(f"storage tag query failed: {response.status_code}", status=response.status_code)
        edges = (((response.json() or {}).get("data") or {}).get("transactions") or {}).get("edges") or []
        if not edges:
            return None
        return edges[0]["node"]["id"]


async def encrypt_and_upload(store: ContentStore, payload: Any, key: bytes, tags: Iterable[Tag] = ()) -> str:
    """Seal ``payload`` with the session key and store the envelope."""

    envelope = cipher.encrypt(payload, key)
    return await store.put(envelope.encode("utf-8"), tuple(tags))


async def fetch_and_decrypt(store: ContentStore, address: str, key: bytes) -> Any:
    """Fetch an envelope by address and open it with the session key."""

    data = await store.get(address)
    return cipher.decrypt(data, key)


__all__ = [
    "ArweaveContentStore",
    "ContentStore",
    "MemoryContentStore",
    "Tag",
    "encrypt_and_upload",
    "fetch_and_decrypt",
    "is_arweave_id",
]
