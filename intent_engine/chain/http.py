"""
HTTP transport for chain clients.

Wraps an aiohttp session and maps transport failures onto the engine's
chain error types:
- 404 -> TransactionNotFoundError
- 429 -> RpcUnavailableError with retry_after_seconds
- other >= 400, connection errors, timeouts -> RpcUnavailableError
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..exceptions import (
    MalformedChainResponseError,
    RpcUnavailableError,
    TransactionNotFoundError,
)


logger = logging.getLogger(__name__)


class HttpTransport:
    """Shared aiohttp session with error mapping."""

    def __init__(
        self,
        base_url: str,
        network_id: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._network_id = network_id
        self._timeout = timeout
        self._headers = {
            "Accept": "application/json",
            "User-Agent": "intent-engine/1.0",
            **(headers or {}),
        }
        self._session = session
        self._owns_session = session is None
        self._rpc_ids = itertools.count(1)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._headers,
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str = "",
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        expect_json: bool = True,
    ) -> Any:
        """Make HTTP request with error mapping."""
        url = f"{self._base_url}{path}"
        session = await self._get_session()
        try:
            async with session.request(method, url, params=params, json=json_body) as response:
                if response.status == 404:
                    raise TransactionNotFoundError(
                        "Not found",
                        network_id=self._network_id,
                        status_code=404,
                        request_url=url,
                    )
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RpcUnavailableError(
                        "Rate limit exceeded",
                        network_id=self._network_id,
                        status_code=429,
                        request_url=url,
                        retry_after_seconds=float(retry_after) if retry_after else None,
                    )
                if response.status >= 400:
                    body = await response.text()
                    raise RpcUnavailableError(
                        f"HTTP {response.status}",
                        network_id=self._network_id,
                        status_code=response.status,
                        request_url=url,
                        context={"response_body": body[:500]},
                    )
                if not expect_json:
                    return await response.text()
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MalformedChainResponseError(
                        "Response is not JSON",
                        network_id=self._network_id,
                        request_url=url,
                        original_error=e,
                    )
        except aiohttp.ClientError as e:
            raise RpcUnavailableError(
                f"Connection error: {e}",
                network_id=self._network_id,
                request_url=url,
                original_error=e,
            )
        except asyncio.TimeoutError as e:
            raise RpcUnavailableError(
                "Request timed out",
                network_id=self._network_id,
                request_url=url,
                original_error=e,
            )

    async def json_rpc(self, method: str, params: List[Any]) -> Any:
        """
        Call a JSON-RPC 2.0 method and return its `result`.

        Raises:
            RpcUnavailableError: Transport failure or server-side RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._rpc_ids),
            "method": method,
            "params": params,
        }
        data = await self.request("POST", json_body=payload)
        if not isinstance(data, dict):
            raise MalformedChainResponseError(
                f"{method}: unexpected payload",
                network_id=self._network_id,
                request_url=self._base_url,
            )
        if data.get("error"):
            error = data["error"]
            raise RpcUnavailableError(
                f"{method}: {error.get('message', error) if isinstance(error, dict) else error}",
                network_id=self._network_id,
                request_url=self._base_url,
                context={"rpc_error": error},
            )
        return data.get("result")

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
