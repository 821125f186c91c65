"""Minimal HTTP client for a running daemon's API.

Only what is needed to check that a controlled daemon actually works:
identity, version, and raw block put/get. All calls are
POST /api/v0/<command>, as the daemon requires.

Example usage:
    node, client = await ipfsd_ctl.disposable_api()
    async with client:
        cid = await client.block_put(b"blorb")
        assert await client.block_get(cid) == b"blorb"
    await node.stop_daemon()
"""

from __future__ import annotations

__all__ = ["IpfsApiClient"]

import json
import logging
from typing import Any

import httpx

from ipfsd_ctl.constants import APP_NAME, DEFAULT_API_TIMEOUT_SECONDS
from ipfsd_ctl.exceptions import ApiError
from ipfsd_ctl.models import Endpoint

_logger = logging.getLogger(f"{APP_NAME}.client")

API_PREFIX = "/api/v0"


class IpfsApiClient:
    """Async client for one daemon API endpoint.

    Wraps an httpx.AsyncClient; close it with aclose() or use it as an
    async context manager.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: API endpoint announced by the daemon.
            timeout: Request timeout in seconds.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        self.endpoint = endpoint
        self._client = httpx.AsyncClient(base_url=endpoint.url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> IpfsApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, command: str, **kwargs: Any) -> httpx.Response:
        """POST an API command and raise ApiError on transport or HTTP errors."""
        try:
            response = await self._client.post(f"{API_PREFIX}/{command}", **kwargs)
        except httpx.TimeoutException as e:
            raise ApiError(f"API request {command} to {self.endpoint} timed out", detail=str(e)) from e
        except httpx.HTTPError as e:
            raise ApiError(f"API request {command} to {self.endpoint} failed: {e}", detail=str(e)) from e

        if response.status_code >= 400:
            detail = _error_message(response)
            _logger.debug(f"API {command} returned {response.status_code}: {detail}")
            raise ApiError(
                f"API {command} failed ({response.status_code}): {detail}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    async def _post_json(self, command: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._post(command, **kwargs)
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise ApiError(f"API {command} returned invalid JSON", detail=response.text) from e
        if not isinstance(payload, dict):
            raise ApiError(f"API {command} returned unexpected payload", detail=response.text)
        return payload

    async def id(self) -> dict[str, Any]:
        """Identity of the node (ID, PublicKey, Addresses, ...)."""
        return await self._post_json("id")

    async def version(self) -> str:
        """Daemon version string, e.g. "0.4.9"."""
        payload = await self._post_json("version")
        return str(payload.get("Version", ""))

    async def block_put(self, data: bytes) -> str:
        """Store a raw block.

        Returns:
            CID of the stored block.
        """
        payload = await self._post_json("block/put", files={"data": ("data", data)})
        key = payload.get("Key")
        if not key:
            raise ApiError("API block/put response has no Key", detail=json.dumps(payload))
        return str(key)

    async def block_get(self, cid: str) -> bytes:
        """Fetch a raw block by CID."""
        response = await self._post("block/get", params={"arg": cid})
        return response.content


def _error_message(response: httpx.Response) -> str:
    """Extract the daemon's error message ({"Message": ...}) or fall back to the body."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text.strip()
    if isinstance(payload, dict) and payload.get("Message"):
        return str(payload["Message"])
    return response.text.strip()
