"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from product_studio.config import PipelineSettings, Settings, StorageSettings
from product_studio.pipeline.models import BatchMaterial, GenerationMode, TaskCreate, TaskView
from product_studio.pipeline.prompting import LocalPromptSynthesizer
from product_studio.pipeline.repository import PipelineRepository
from product_studio.pipeline.runtime import PipelineRuntime
from product_studio.providers.base import (
    AnalysisResponse,
    GeneratedImage,
    ImageRequest,
    ProviderError,
)
from product_studio.providers.mock import MOCK_VISION_MODEL, MockProviders
from product_studio.providers.registry import ProviderRegistry


class ScriptedProviders(MockProviders):
    """Mock collaborators that count calls and fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.ocr_calls = 0
        self.style_calls = 0
        self.content_calls = 0
        self.image_calls = 0
        self.fail_content_for: set[bytes] = set()
        self.fail_style = False
        self.fail_images = False
        self.style_delay = 0.0
        self.content_delay = 0.0
        self.content_in_flight = 0
        self.content_peak = 0

    async def extract_text(self, image: bytes) -> list[str]:
        self.ocr_calls += 1
        return await super().extract_text(image)

    async def analyze_style(self, image: bytes, ocr_texts: list[str]) -> AnalysisResponse:
        self.style_calls += 1
        if self.style_delay:
            await asyncio.sleep(self.style_delay)
        if self.fail_style:
            raise ProviderError("mock", "style analysis unavailable")
        return await super().analyze_style(image, ocr_texts)

    async def analyze_content(self, image: bytes) -> AnalysisResponse:
        self.content_calls += 1
        self.content_in_flight += 1
        self.content_peak = max(self.content_peak, self.content_in_flight)
        try:
            if self.content_delay:
                await asyncio.sleep(self.content_delay)
            if image in self.fail_content_for:
                raise ProviderError("mock", "content analysis unavailable")
            return await super().analyze_content(image)
        finally:
            self.content_in_flight -= 1

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        self.image_calls += 1
        if self.fail_images:
            raise ProviderError("mock", "image model unavailable")
        return await super().generate(request)


@dataclass(slots=True)
class Studio:
    """A wired runtime over a temporary database and image root."""

    settings: Settings
    repository: PipelineRepository
    providers: ScriptedProviders
    runtime: PipelineRuntime
    inputs: Path

    def image(self, name: str, content: bytes | None = None) -> str:
        path = self.inputs / name
        path.write_bytes(content if content is not None else name.encode())
        return str(path)

    def materials(self, count: int) -> list[BatchMaterial]:
        return [
            BatchMaterial(path=self.image(f"product-{index}.png"), name=f"Product {index}")
            for index in range(count)
        ]

    def template_task(self, template_id: str = "natural-fresh") -> TaskView:
        return self.repository.create_task(
            TaskCreate(
                product_image_path=self.image("product.png"),
                generation_mode=GenerationMode.TEMPLATE,
                selected_models=("openrouter-gemini-image",),
                style_template_id=template_id,
            ),
        )

    def reference_task(self) -> TaskView:
        return self.repository.create_task(
            TaskCreate(
                product_image_path=self.image("product.png"),
                generation_mode=GenerationMode.REFERENCE,
                selected_models=("openrouter-gemini-image",),
                reference_image_path=self.image("reference.png"),
            ),
        )


def build_settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "studio.db",
        mock_providers=True,
        pipeline=PipelineSettings(batch_concurrency=2),
        storage=StorageSettings(image_root=tmp_path / "store"),
    )


def build_registry(providers: ScriptedProviders) -> ProviderRegistry:
    return ProviderRegistry(
        text_extractor=providers,
        style_analyzer=providers,
        content_analyzer=providers,
        prompt_synthesizer=LocalPromptSynthesizer(),
        image_generators={"openrouter": providers, "jimeng": providers},
        cost_lookup=providers,
        vision_model=MOCK_VISION_MODEL,
    )


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[PipelineRepository]:
    repo = PipelineRepository(tmp_path / "repository.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def studio(tmp_path: Path) -> Iterator[Studio]:
    settings = build_settings(tmp_path)
    repo = PipelineRepository(settings.db_path)
    repo.init_schema()
    providers = ScriptedProviders()
    runtime = PipelineRuntime(
        settings=settings,
        repository=repo,
        providers=build_registry(providers),
    )
    inputs = tmp_path / "inputs"
    inputs.mkdir()
    try:
        yield Studio(
            settings=settings,
            repository=repo,
            providers=providers,
            runtime=runtime,
            inputs=inputs,
        )
    finally:
        repo.close()
