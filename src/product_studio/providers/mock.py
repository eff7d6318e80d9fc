"""Offline deterministic collaborators for local runs without credentials."""

from __future__ import annotations

import hashlib
import itertools

from product_studio.pipeline.models import CurrencyClass
from product_studio.providers.base import (
    AnalysisResponse,
    CostQuote,
    GeneratedImage,
    ImageRequest,
    ProviderCall,
)

PROVIDER = "mock"
MOCK_VISION_MODEL = "mock-vision"
MOCK_CALL_COST_USD = 0.001


class MockProviders:
    """Implements every collaborator protocol with canned, stable answers.

    Image generation echoes the product image back, so a full pipeline run
    touches only the local filesystem.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.calls: list[str] = []

    def _call(self, kind: str, model: str) -> ProviderCall:
        call_id = f"mock-{kind}-{next(self._counter)}"
        self.calls.append(call_id)
        return ProviderCall(provider=PROVIDER, model=model, call_id=call_id)

    async def extract_text(self, image: bytes) -> list[str]:
        return [f"MOCK-{_digest(image)}"]

    async def analyze_style(self, image: bytes, ocr_texts: list[str]) -> AnalysisResponse:
        return AnalysisResponse(
            payload={
                "layout": {
                    "main_object": {"position": "center", "view_angle": "eye level"},
                    "background_structure": {"type": "soft gradient"},
                    "layer_sequence": ["background", "product", "text"],
                },
                "style": {
                    "color_style": {"primary_color": "#F4F1EA", "secondary_colors": ["#2F4F4F"]},
                    "lighting": {"type": "soft", "direction": "top left"},
                    "texture": {"surface": "matte"},
                    "vibe": "clean",
                    "style_prompt": f"clean minimal studio look {_digest(image)}",
                },
                "ocr_texts": ocr_texts,
            },
            call=self._call("style", MOCK_VISION_MODEL),
        )

    async def analyze_content(self, image: bytes) -> AnalysisResponse:
        return AnalysisResponse(
            payload={
                "product_shape": {"category": "box", "digest": _digest(image)},
                "product_orientation": {"facing": "front"},
                "product_surface": {"material": "paper"},
                "color_profile": {"primary_color": "white"},
                "defects": [],
            },
            call=self._call("content", MOCK_VISION_MODEL),
        )

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        call = self._call("image", request.model)
        return GeneratedImage(call=call, data=request.product_image, mime_type="image/png")

    async def lookup(self, call_id: str) -> CostQuote:
        return CostQuote(
            amount=MOCK_CALL_COST_USD,
            currency_class=CurrencyClass.METERED_USD,
            tokens_prompt=100,
            tokens_completion=50,
            latency_ms=10,
            extra={"call_id": call_id},
        )


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:8]
