"""Baidu OCR text extraction with an explicitly owned access-token cache."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from product_studio.config import OcrSettings
from product_studio.providers.base import ProviderError
from product_studio.providers.http import AsyncHttpClient

logger = logging.getLogger(__name__)

PROVIDER = "baidu_ocr"
TOKEN_URL = "https://aip.baidubce.com/oauth/2.0/token"
OCR_URL = "https://aip.baidubce.com/rest/2.0/ocr/v1/accurate_basic"


@dataclass(slots=True)
class AccessToken:
    value: str
    expires_at: float


class AccessTokenCache:
    """Time-bounded token holder.

    A cached token is reused until `refresh_margin_seconds` before it expires;
    concurrent callers share one refresh.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[AccessToken]],
        *,
        refresh_margin_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetch = fetch
        self._refresh_margin = refresh_margin_seconds
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    def is_fresh(self) -> bool:
        return self._token is not None and self._clock() < (
            self._token.expires_at - self._refresh_margin
        )

    async def get(self) -> str:
        if self._token is not None and self.is_fresh():
            return self._token.value
        async with self._lock:
            if self._token is None or not self.is_fresh():
                self._token = await self._fetch()
                logger.info("Access token refreshed")
            return self._token.value

    def invalidate(self) -> None:
        self._token = None


class BaiduOcrClient:
    """High-accuracy general OCR; recognition failures degrade to an empty list."""

    def __init__(
        self,
        settings: OcrSettings,
        http: AsyncHttpClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._http = http
        self._clock = clock
        self.token_cache = AccessTokenCache(
            self._fetch_token,
            refresh_margin_seconds=settings.token_refresh_margin_seconds,
            clock=clock,
        )

    async def extract_text(self, image: bytes) -> list[str]:
        try:
            token = await self.token_cache.get()
            payload = await self._http.post_json(
                OCR_URL,
                provider=PROVIDER,
                params={"access_token": token},
                data={"image": base64.b64encode(image).decode("ascii")},
            )
            if payload.get("error_code"):
                raise ProviderError(
                    PROVIDER,
                    f"error {payload.get('error_code')}: {payload.get('error_msg')}",
                )
            words = payload.get("words_result") or []
            texts = [
                str(item["words"]) for item in words if isinstance(item, dict) and item.get("words")
            ]
        except (ProviderError, httpx.HTTPError) as exc:
            logger.warning("OCR failed, continuing without text: %s", exc)
            return []
        logger.info("OCR recognized %d text lines", len(texts))
        return texts

    async def _fetch_token(self) -> AccessToken:
        if not self._settings.api_key or not self._settings.secret_key:
            raise ProviderError(PROVIDER, "BAIDU_OCR_API_KEY and BAIDU_OCR_SECRET_KEY not set")
        payload = await self._http.post_json(
            TOKEN_URL,
            provider=PROVIDER,
            params={
                "grant_type": "client_credentials",
                "client_id": self._settings.api_key,
                "client_secret": self._settings.secret_key,
            },
        )
        if payload.get("error"):
            raise ProviderError(
                PROVIDER,
                str(payload.get("error_description") or payload.get("error")),
            )
        token = payload.get("access_token")
        if not token:
            raise ProviderError(PROVIDER, "token response has no access_token")
        return AccessToken(
            value=str(token),
            expires_at=self._clock() + float(payload.get("expires_in") or 0),
        )


class NullTextExtractor:
    """Used when OCR credentials are absent."""

    async def extract_text(self, image: bytes) -> list[str]:
        return []
