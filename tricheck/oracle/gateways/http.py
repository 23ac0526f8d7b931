"""Shared async HTTP plumbing for the market API and the ledger relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """An HTTP gateway call failed after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayNotFound(GatewayError):
    """The requested resource does not exist (HTTP 404)."""


class JsonHttpClient:
    """
    Thin ``httpx.AsyncClient`` wrapper for JSON APIs.

    - Retries connection errors, timeouts and 5xx/429 responses with
      exponential backoff
    - Never retries other 4xx responses
    - Raises ``GatewayError`` (or ``GatewayNotFound``) on final failure
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 15.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=40)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            limits=limits,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JsonHttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        return await self.request_json("GET", path, params=params)

    async def post_json(self, path: str, body: Any) -> Any:
        return await self.request_json("POST", path, json=body)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> Any:
        attempt = 0
        backoff = self.backoff_seconds
        while True:
            try:
                resp = await self._client.request(method, path, params=params, json=json)
                resp.raise_for_status()
                if not resp.content:
                    return None
                return resp.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 404:
                    raise GatewayNotFound(f"{method} {path}: not found", status) from exc
                if status < 500 and status != 429:
                    raise GatewayError(
                        f"{method} {path}: HTTP {status} {exc.response.text[:200]}",
                        status,
                    ) from exc
                if attempt >= self.max_retries:
                    raise GatewayError(f"{method} {path}: HTTP {status}", status) from exc
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                if attempt >= self.max_retries:
                    raise GatewayError(f"{method} {path}: {type(exc).__name__}: {exc}") from exc
            except ValueError as exc:
                raise GatewayError(f"{method} {path}: invalid JSON body: {exc}") from exc
            logger.debug({"http_retry": {"method": method, "path": path, "attempt": attempt + 1}})
            await asyncio.sleep(backoff)
            attempt += 1
            backoff *= 2


__all__ = ["GatewayError", "GatewayNotFound", "JsonHttpClient"]
