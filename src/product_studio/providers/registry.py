"""Wiring of concrete collaborators from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from product_studio.config import Settings
from product_studio.pipeline.prompting import LocalPromptSynthesizer
from product_studio.providers.baidu_ocr import BaiduOcrClient, NullTextExtractor
from product_studio.providers.base import (
    ContentAnalyzer,
    CostLookup,
    ImageGenerator,
    PromptSynthesizer,
    ProviderError,
    StyleAnalyzer,
    TextExtractor,
)
from product_studio.providers.http import AsyncHttpClient
from product_studio.providers.jimeng import JimengImageGenerator
from product_studio.providers.mock import MOCK_VISION_MODEL, MockProviders
from product_studio.providers.openrouter import OpenRouterClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProviderRegistry:
    """Collaborators handed to the pipeline core."""

    text_extractor: TextExtractor
    style_analyzer: StyleAnalyzer
    content_analyzer: ContentAnalyzer
    prompt_synthesizer: PromptSynthesizer
    image_generators: dict[str, ImageGenerator]
    cost_lookup: CostLookup | None = None
    vision_model: str = "unknown"
    http: AsyncHttpClient | None = field(default=None, repr=False)

    def generator_for(self, provider: str) -> ImageGenerator:
        generator = self.image_generators.get(provider)
        if generator is None:
            raise ProviderError(provider, "no image generator registered")
        return generator

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()


def build_providers(settings: Settings) -> ProviderRegistry:
    """Real adapters, or deterministic mocks when `mock_providers` is set."""

    if settings.mock_providers:
        logger.info("Using mock providers")
        mock = MockProviders()
        return ProviderRegistry(
            text_extractor=mock,
            style_analyzer=mock,
            content_analyzer=mock,
            prompt_synthesizer=LocalPromptSynthesizer(),
            image_generators={"openrouter": mock, "jimeng": mock},
            cost_lookup=mock,
            vision_model=MOCK_VISION_MODEL,
        )

    http = AsyncHttpClient(
        timeout_seconds=settings.http.timeout_seconds,
        max_retries=settings.http.max_retries,
        retry_delay_seconds=settings.http.retry_delay_seconds,
    )
    openrouter = OpenRouterClient(settings.openrouter, http)
    text_extractor: TextExtractor
    if settings.ocr.api_key and settings.ocr.secret_key:
        text_extractor = BaiduOcrClient(settings.ocr, http)
    else:
        logger.info("OCR credentials missing; reference analysis runs without OCR text")
        text_extractor = NullTextExtractor()
    return ProviderRegistry(
        text_extractor=text_extractor,
        style_analyzer=openrouter,
        content_analyzer=openrouter,
        prompt_synthesizer=LocalPromptSynthesizer(),
        image_generators={
            "openrouter": openrouter,
            "jimeng": JimengImageGenerator(settings.jimeng, http),
        },
        cost_lookup=openrouter,
        vision_model=openrouter.vision_model,
        http=http,
    )
