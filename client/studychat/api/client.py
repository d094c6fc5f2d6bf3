"""Shared HTTP plumbing for the platform's REST endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..credentials import TokenStore
from ..errors import ApiError

logger = logging.getLogger(__name__)


def error_message(response: httpx.Response, fallback: str) -> str:
    """The server's ``error`` text when it sent one, else ``fallback``."""
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return fallback


class ApiClient:
    def __init__(
        self,
        base_url: str,
        tokens: TokenStore,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.tokens = tokens
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers: Dict[str, str] = dict(kwargs.pop("headers", None) or {})
        headers.update(self.tokens.bearer_headers())
        try:
            return await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise ApiError(f"API call failed: {exc}") from exc

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self.request(method, url, **kwargs)
        if response.is_error:
            message = error_message(response, f"API error: {response.status_code}")
            logger.error("%s %s returned %s: %s", method, url, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)
        return response.json()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
