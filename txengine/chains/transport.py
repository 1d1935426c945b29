"""
HTTP plumbing shared by the chain backends.

Maps transport problems onto the error taxonomy: unreachable hosts, timeouts
and 5xx answers become ``ChainConnectionError``; undecodable bodies become
``ParseError``. JSON-RPC error objects are returned to the backend, which knows
what they mean for its chain.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import settings
from ..core.errors import ChainConnectionError, ParseError


class JsonRpcError(Exception):
    """A JSON-RPC ``error`` member; interpreted by the calling backend."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class HttpTransport:
    """Thin wrapper over ``httpx.AsyncClient`` bound to one endpoint."""

    def __init__(
        self,
        base_url: str,
        chain: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain = chain
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.request_timeout_seconds)
        self._request_id = 0

    async def request(
        self,
        method: str,
        path: str = "",
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """Issue a request and return ``(status_code, decoded_json)``."""
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, json=json, params=params)
        except httpx.HTTPError as e:
            raise ChainConnectionError(f"{method} {url} failed: {e}", chain=self.chain) from e

        # Gateways failing; a plain 500 may still carry a chain error body
        if response.status_code in (502, 503, 504):
            raise ChainConnectionError(
                f"{method} {url} returned HTTP {response.status_code}",
                chain=self.chain,
                details={"status_code": response.status_code},
            )
        if response.status_code == 429:
            raise ChainConnectionError(f"{method} {url} rate limited", chain=self.chain)

        try:
            body = response.json() if response.content else None
        except ValueError as e:
            if response.status_code >= 400:
                raise ChainConnectionError(
                    f"{method} {url} returned HTTP {response.status_code}",
                    chain=self.chain,
                    details={"status_code": response.status_code},
                ) from e
            raise ParseError(f"{method} {url} returned invalid JSON", chain=self.chain) from e

        return response.status_code, body

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Tuple[int, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Any) -> Tuple[int, Any]:
        return await self.request("POST", path, json=payload)

    async def rpc_call(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC 2.0 call.

        Raises:
            JsonRpcError: the node answered with an ``error`` member
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        status, body = await self.post("", payload)

        if not isinstance(body, dict):
            raise ParseError(f"Malformed JSON-RPC response to {method}", chain=self.chain)
        if body.get("error") is not None:
            error = body["error"]
            if isinstance(error, dict):
                raise JsonRpcError(int(error.get("code", 0)), str(error.get("message", "")), error.get("data"))
            raise JsonRpcError(0, str(error))
        if status >= 400:
            raise ChainConnectionError(f"{method} returned HTTP {status}", chain=self.chain)
        return body.get("result")

    async def close(self) -> None:
        await self._client.aclose()
