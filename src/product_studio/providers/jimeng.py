"""Seedream (Jimeng) image generation, billed at a fixed price per image."""

from __future__ import annotations

import base64
import logging
import time

from product_studio.config import JimengSettings
from product_studio.pipeline.models import CurrencyClass
from product_studio.providers.base import (
    GeneratedImage,
    ImageRequest,
    ProviderCall,
    ProviderError,
)
from product_studio.providers.http import AsyncHttpClient

logger = logging.getLogger(__name__)

PROVIDER = "jimeng"

PROMPT_TEMPLATE = """TASK: Create an e-commerce product photo inspired by the reference style.

KEY PRINCIPLE:
- The product's physical properties (shape, color, material) must stay identical
- Background, scene, props, lighting and atmosphere may be creatively enhanced

{prompt}

Generate a high-quality product photo that looks professional and appealing for online sales."""


class JimengImageGenerator:
    """Image-to-image generation through the Ark images endpoint."""

    def __init__(self, settings: JimengSettings, http: AsyncHttpClient) -> None:
        self._settings = settings
        self._http = http

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        if not self._settings.api_key:
            raise ProviderError(PROVIDER, "JIMEN_API_KEY is not set")
        model = request.model or self._settings.model
        body = {
            "model": model,
            "prompt": PROMPT_TEMPLATE.format(prompt=request.prompt),
            "size": request.resolution or self._settings.resolution,
            "image": [
                "data:image/jpeg;base64," + base64.b64encode(request.product_image).decode("ascii"),
            ],
            "watermark": False,
        }
        started = time.monotonic()
        payload = await self._http.post_json(
            self._settings.endpoint,
            provider=PROVIDER,
            json=body,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        items = payload.get("data")
        url = items[0].get("url") if isinstance(items, list) and items else None
        if not url:
            raise ProviderError(PROVIDER, f"no image url in response keys {sorted(payload)}")
        logger.info("Seedream image ready, cost %.2f CNY", self._settings.cost_per_image)
        return GeneratedImage(
            call=ProviderCall(
                provider=PROVIDER,
                model=model,
                call_id=f"jimeng-{payload.get('created')}",
                fixed_cost=self._settings.cost_per_image,
                currency_class=CurrencyClass.FIXED_CNY,
                latency_ms=int((time.monotonic() - started) * 1000),
            ),
            url=str(url),
        )
