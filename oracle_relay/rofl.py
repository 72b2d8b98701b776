"""Client for the ROFL application daemon on its UNIX socket."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import RoflError

LOGGER = logging.getLogger(__name__)

DEFAULT_SOCKET = "/run/rofl-appd.sock"


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


class RoflClient:
    """Sign-and-submit transactions through the attested daemon."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._socket_path = socket_path
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        transport = self._transport or httpx.AsyncHTTPTransport(uds=self._socket_path)
        LOGGER.debug("Posting to %s via %s", path, self._socket_path)
        try:
            async with httpx.AsyncClient(
                transport=transport, base_url="http://localhost", timeout=self._timeout
            ) as client:
                response = await client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise RoflError(f"ROFL appd request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RoflError(f"ROFL appd {path} returned status {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise RoflError(f"ROFL appd {path} returned invalid JSON: {response.text}") from exc

    async def submit_tx(self, *, to: str, data: str, gas_limit: int, value: int = 0) -> Any:
        payload = {
            "tx": {
                "kind": "eth",
                "data": {
                    "gas_limit": gas_limit,
                    "to": _strip_0x(to),
                    "value": value,
                    "data": _strip_0x(data),
                },
            },
            "encrypt": False,
        }
        return await self._post("/rofl/v1/tx/sign-submit", payload)


__all__ = ["RoflClient"]
