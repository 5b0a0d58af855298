"""
vaultdrop/rpc.py

Minimal async JSON-RPC 2.0 client over HTTP.

Used for the Helius extension methods (getTokenAccounts,
getPriorityFeeEstimate) that the standard Solana client does not cover.
"""

import logging
from typing import Any, Optional

import httpx

from .exceptions import JsonRpcError

logger = logging.getLogger("vaultdrop.rpc")


class JsonRpcClient:
    """
    JSON-RPC client bound to a single endpoint.

    Example:
        async with JsonRpcClient("https://mainnet.helius-rpc.com/?api-key=...") as rpc:
            result = await rpc.call("getTokenAccounts", {"mint": mint, "page": 1, "limit": 1000})
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            url: JSON-RPC endpoint URL
            timeout: Request timeout in seconds
            http_client: Optional preconfigured httpx client (tests inject a MockTransport)
        """
        self.url = url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(self, method: str, params: Any) -> Any:
        """
        Send a request and return its result.

        Raises:
            JsonRpcError: On transport failure, non-2xx status, or error response
        """
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise JsonRpcError(f"{method} request failed: {e}") from e
        except ValueError as e:
            raise JsonRpcError(f"{method} returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise JsonRpcError(f"{method} returned a non-object response")

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise JsonRpcError(
                    f"{method} error {error.get('code')}: {error.get('message')}"
                )
            raise JsonRpcError(f"{method} error: {error}")

        if "result" not in data:
            raise JsonRpcError(f"{method} response has no result")

        return data["result"]

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
