"""Collaborator interfaces consumed by the pipeline core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from product_studio.pipeline.models import (
    ContentAnalysis,
    CurrencyClass,
    GenerationMode,
    ProductInfo,
    StyleAnalysis,
)


class ProviderError(RuntimeError):
    """External provider call failed or returned unusable data."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        detail = f"{provider}: {message}"
        if status_code is not None:
            detail = f"{provider}: HTTP {status_code}: {message}"
        super().__init__(detail)
        self.provider = provider
        self.status_code = status_code


@dataclass(slots=True)
class ProviderCall:
    """One paid external call, as seen by the cost ledger."""

    provider: str
    model: str
    call_id: str | None = None
    fixed_cost: float | None = None
    currency_class: CurrencyClass = CurrencyClass.METERED_USD
    latency_ms: int | None = None

    @property
    def is_metered(self) -> bool:
        return self.fixed_cost is None


@dataclass(slots=True)
class AnalysisResponse:
    """Parsed JSON payload from a vision model plus the call that produced it."""

    payload: dict[str, Any]
    call: ProviderCall


@dataclass(slots=True)
class PromptRequest:
    """Everything the prompt synthesizer may draw from."""

    style: StyleAnalysis
    content: ContentAnalysis
    generation_mode: GenerationMode = GenerationMode.REFERENCE
    product_info: ProductInfo | None = None
    reference_name: str | None = None
    reference_category: str | None = None
    scene_type: str | None = None
    scene_description: str | None = None


@dataclass(slots=True)
class ImageRequest:
    """Inputs for one image generation call."""

    product_image: bytes
    prompt: str
    model: str
    style_reference: bytes | None = None
    resolution: str | None = None


@dataclass(slots=True)
class GeneratedImage:
    """Image bytes or a downloadable URL returned by an image model."""

    call: ProviderCall
    data: bytes | None = None
    url: str | None = None
    mime_type: str = "image/png"


@dataclass(slots=True)
class CostQuote:
    """Metered cost reported by the provider for one call id."""

    amount: float
    currency_class: CurrencyClass = CurrencyClass.METERED_USD
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    latency_ms: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class TextExtractor(Protocol):
    """OCR over the reference image."""

    async def extract_text(self, image: bytes) -> list[str]:
        """Return recognized text lines; never raises for recognition failures."""


class StyleAnalyzer(Protocol):
    """Vision model that describes layout and visual style."""

    async def analyze_style(self, image: bytes, ocr_texts: list[str]) -> AnalysisResponse:
        """Analyze a reference image."""


class ContentAnalyzer(Protocol):
    """Vision model that describes the product itself."""

    async def analyze_content(self, image: bytes) -> AnalysisResponse:
        """Analyze a product image."""


class PromptSynthesizer(Protocol):
    """Combines analyses and metadata into the generation prompt."""

    name: str

    async def synthesize(self, request: PromptRequest) -> str:
        """Return the generation prompt text."""


class ImageGenerator(Protocol):
    """One image model family."""

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Generate one image with the given provider model."""


class CostLookup(Protocol):
    """Resolves metered cost for a provider call id."""

    async def lookup(self, call_id: str) -> CostQuote:
        """Return the provider-reported cost of one call."""
