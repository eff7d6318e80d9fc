"""Async HTTP client with bounded timeout and a small fixed retry count."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from product_studio.providers.base import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_RETRY_DELAY_SECONDS = 1.0


class AsyncHttpClient:
    """httpx.AsyncClient wrapper shared by all provider adapters.

    Timeouts and transport errors are retried `max_retries` times after a
    fixed delay; HTTP error statuses are returned to the caller untouched.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
            follow_redirects=True,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        provider: str,
        **kwargs: Any,
    ) -> httpx.Response:
        max_attempts = self._max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                reason = "timeout" if isinstance(exc, httpx.TimeoutException) else str(exc)
                message = f"{reason} (attempt {attempt}/{max_attempts})"
                if attempt >= max_attempts:
                    logger.error("All %d attempts failed for %s %s", max_attempts, method, url)
                    raise ProviderError(provider, message) from exc
                logger.warning(
                    "%s %s failed: %s; retrying in %.1fs",
                    method,
                    url,
                    message,
                    self._retry_delay,
                )
            await asyncio.sleep(self._retry_delay)
        raise ProviderError(provider, "no attempts made")

    async def post_json(self, url: str, *, provider: str, **kwargs: Any) -> dict[str, Any]:
        response = await self.request("POST", url, provider=provider, **kwargs)
        return _json_or_raise(response, provider)

    async def get_json(self, url: str, *, provider: str, **kwargs: Any) -> dict[str, Any]:
        response = await self.request("GET", url, provider=provider, **kwargs)
        return _json_or_raise(response, provider)

    async def get_bytes(self, url: str, *, provider: str) -> bytes:
        response = await self.request("GET", url, provider=provider)
        if not response.is_success:
            raise ProviderError(provider, "download failed", status_code=response.status_code)
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AsyncHttpClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _json_or_raise(response: httpx.Response, provider: str) -> dict[str, Any]:
    if not response.is_success:
        raise ProviderError(provider, response.text[:500], status_code=response.status_code)
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError(provider, f"invalid JSON body: {response.text[:200]}") from exc
    if not isinstance(payload, dict):
        raise ProviderError(provider, "expected a JSON object")
    return payload
