"""OpenRouter adapter: vision analysis, image generation and generation cost lookup."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from typing import Any

from product_studio.config import OpenRouterSettings
from product_studio.pipeline.models import CurrencyClass
from product_studio.providers.base import (
    AnalysisResponse,
    CostQuote,
    GeneratedImage,
    ImageRequest,
    ProviderCall,
    ProviderError,
)
from product_studio.providers.http import AsyncHttpClient

logger = logging.getLogger(__name__)

PROVIDER = "openrouter"

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")
_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)

STYLE_ANALYSIS_PROMPT = """You analyze a competitor's product marketing image.
Return two sections.

layout: main_object (position, horizontal_offset, vertical_offset, size, view_angle,
rotation, edge_crop), background_structure (type, layers, decorations), text_blocks
(type, position, alignment, has_mask for every text block), decors (light_effects,
shadows, shapes) and layer_sequence (bottom to top, e.g. ["background", "product", "text"]).

style: color_style (primary_color, secondary_colors, saturation, brightness), lighting
(direction, type, shadow_intensity, shadow_blur), texture (surface, grain, reflection),
background_style (gradient_direction, blur_level, floating_effects), vibe (mood keywords)
and style_prompt (a descriptive English prompt reproducing this style).

Reply with JSON only: {"layout": {...}, "style": {...}}"""

CONTENT_ANALYSIS_PROMPT = """You analyze a real photo of a product that will be restaged.
Extract: product_shape (category, proportions, outline_features), product_orientation
(view_angle, facing, tilt), product_regions (main_bounding_box, key_regions),
product_surface (material, glossiness), product_texture (smoothness, pattern_direction,
transparency), color_profile (primary_color, secondary_color, brightness, saturation)
and defects (list of visible issues such as glare, noise, occlusion, dirty background).

Reply with JSON only using exactly these keys."""

IMAGE_PROMPT_PREFIX = (
    "Based on this reference product image, generate a new professional "
    "e-commerce product photo with similar style. "
)


class OpenRouterClient:
    """Chat-completions based collaborator for stages 1, 2 and 4."""

    def __init__(self, settings: OpenRouterSettings, http: AsyncHttpClient) -> None:
        self._settings = settings
        self._http = http

    @property
    def vision_model(self) -> str:
        return self._settings.vision_model

    async def analyze_style(self, image: bytes, ocr_texts: list[str]) -> AnalysisResponse:
        prompt = STYLE_ANALYSIS_PROMPT
        if ocr_texts:
            prompt += "\n\nText recognized on the image (OCR):\n" + "\n".join(ocr_texts)
        return await self._analyze(image, prompt, max_tokens=4000)

    async def analyze_content(self, image: bytes) -> AnalysisResponse:
        return await self._analyze(image, CONTENT_ANALYSIS_PROMPT, max_tokens=2000)

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        content: list[dict[str, Any]] = [
            {"type": "text", "text": IMAGE_PROMPT_PREFIX + request.prompt},
            {"type": "image_url", "image_url": {"url": _data_url(request.product_image)}},
        ]
        if request.style_reference is not None:
            content.append(
                {"type": "image_url", "image_url": {"url": _data_url(request.style_reference)}},
            )
        started = time.monotonic()
        data = await self._chat(model=request.model, content=content, max_tokens=None)
        call = ProviderCall(
            provider=PROVIDER,
            model=request.model,
            call_id=str(data.get("id") or "") or None,
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        url = _extract_image_url(data)
        if url is None:
            raise ProviderError(
                PROVIDER,
                f"could not extract image from response keys {sorted(data)}",
            )
        match = _DATA_URL_RE.match(url)
        if match is None:
            return GeneratedImage(call=call, url=url)
        try:
            payload = base64.b64decode(match.group(2), validate=True)
        except binascii.Error as exc:
            raise ProviderError(PROVIDER, "image payload is not valid base64") from exc
        return GeneratedImage(call=call, data=payload, mime_type=match.group(1))

    async def lookup(self, call_id: str) -> CostQuote:
        """Metered USD cost reported by the generation stats endpoint."""

        payload = await self._http.get_json(
            f"{self._settings.base_url}/generation",
            provider=PROVIDER,
            params={"id": call_id},
            headers=self._headers(),
        )
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ProviderError(PROVIDER, f"generation {call_id} has no data")
        latency = data.get("latency")
        return CostQuote(
            amount=float(data.get("total_cost") or 0.0),
            currency_class=CurrencyClass.METERED_USD,
            tokens_prompt=data.get("tokens_prompt"),
            tokens_completion=data.get("tokens_completion"),
            latency_ms=int(latency) if latency is not None else None,
            extra={"model": data.get("model")},
        )

    async def _analyze(self, image: bytes, prompt: str, *, max_tokens: int) -> AnalysisResponse:
        started = time.monotonic()
        data = await self._chat(
            model=self._settings.vision_model,
            content=[
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": _data_url(image)}},
            ],
            max_tokens=max_tokens,
        )
        text = _message_text(data)
        logger.debug("Vision response (%d chars) from %s", len(text), self._settings.vision_model)
        return AnalysisResponse(
            payload=parse_json_response(text),
            call=ProviderCall(
                provider=PROVIDER,
                model=self._settings.vision_model,
                call_id=str(data.get("id") or "") or None,
                latency_ms=int((time.monotonic() - started) * 1000),
            ),
        )

    async def _chat(
        self,
        *,
        model: str,
        content: list[dict[str, Any]],
        max_tokens: int | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model, "messages": [{"role": "user", "content": content}]}
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return await self._http.post_json(
            f"{self._settings.base_url}/chat/completions",
            provider=PROVIDER,
            json=body,
            headers=self._headers(),
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        if self._settings.site_url:
            headers["HTTP-Referer"] = self._settings.site_url
        if self._settings.site_name:
            headers["X-Title"] = self._settings.site_name
        return headers


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a model reply that may be wrapped in markdown code fences."""

    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        payload = json.loads(cleaned or "{}")
    except json.JSONDecodeError as exc:
        raise ProviderError(PROVIDER, f"reply is not JSON: {cleaned[:200]}") from exc
    if not isinstance(payload, dict):
        raise ProviderError(PROVIDER, "reply JSON is not an object")
    return payload


def _data_url(image: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")


def _message(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProviderError(PROVIDER, "response has no choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise ProviderError(PROVIDER, "response choice has no message")
    return message


def _message_text(data: dict[str, Any]) -> str:
    content = _message(data).get("content")
    return content if isinstance(content, str) else "{}"


def _extract_image_url(data: dict[str, Any]) -> str | None:
    message = _message(data)
    images = message.get("images")
    if isinstance(images, list):
        for image in images:
            url = _image_item_url(image)
            if url:
                return url
    content = message.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") in {"image_url", "image"}:
                url = _image_item_url(item)
                if url:
                    return url
    return None


def _image_item_url(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    image_url = item.get("image_url")
    if isinstance(image_url, dict) and image_url.get("url"):
        return str(image_url["url"])
    for key in ("url", "image"):
        if item.get(key):
            return str(item[key])
    return None
