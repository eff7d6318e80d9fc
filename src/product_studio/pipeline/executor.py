"""Stage logic for one task: each stage returns its output plus the paid calls it made."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from product_studio.pipeline.catalog import ImageModelSpec
from product_studio.pipeline.errors import StageExecutionError
from product_studio.pipeline.models import (
    ContentAnalysis,
    GenerationMode,
    ResultImage,
    Stage,
    StyleAnalysis,
    TaskView,
)
from product_studio.pipeline.templates import get_template
from product_studio.providers.base import ImageRequest, PromptRequest, ProviderCall
from product_studio.providers.registry import ProviderRegistry
from product_studio.storage.common import utc_now
from product_studio.storage.images import ImageStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class StageOutcome(Generic[T]):
    """Output of one stage, the model that served it and the calls to price."""

    output: T
    model: str | None = None
    calls: list[ProviderCall] = field(default_factory=list)


@dataclass(slots=True)
class ImageBatchOutcome:
    results: list[ResultImage]
    calls: list[ProviderCall]

    @property
    def succeeded(self) -> list[ResultImage]:
        return [result for result in self.results if result.succeeded]


class StepExecutor:
    """Runs the work of each stage against the configured collaborators."""

    def __init__(
        self,
        providers: ProviderRegistry,
        images: ImageStore,
        catalog: dict[str, ImageModelSpec],
    ) -> None:
        self._providers = providers
        self._images = images
        self._catalog = catalog

    async def analyze_style_source(
        self,
        *,
        generation_mode: GenerationMode,
        reference_image_path: str | None,
        style_template_id: str | None,
    ) -> StageOutcome[StyleAnalysis]:
        """Stage 1: preset lookup in template mode, OCR plus vision analysis otherwise."""

        stage = int(Stage.REFERENCE_ANALYSIS)
        if generation_mode == GenerationMode.TEMPLATE:
            template = get_template(style_template_id or "")
            if template is None:
                raise StageExecutionError(stage, f"unknown style template {style_template_id!r}")
            return StageOutcome(
                output=template.preset_analysis(),
                model=f"template:{template.template_id}",
            )
        if not reference_image_path:
            raise StageExecutionError(stage, "reference mode requires a reference image")
        image = await self._images.load(reference_image_path)
        ocr_texts = await self._providers.text_extractor.extract_text(image)
        response = await self._providers.style_analyzer.analyze_style(image, ocr_texts)
        analysis = StyleAnalysis.from_dict(response.payload)
        if not analysis.layout and not analysis.style:
            raise StageExecutionError(stage, "style analysis returned neither layout nor style")
        analysis.ocr_texts = list(ocr_texts)
        return StageOutcome(output=analysis, model=response.call.model, calls=[response.call])

    async def analyze_reference(self, task: TaskView) -> StageOutcome[StyleAnalysis]:
        return await self.analyze_style_source(
            generation_mode=task.generation_mode,
            reference_image_path=task.reference_image_path,
            style_template_id=task.style_template_id,
        )

    async def analyze_content(self, task: TaskView) -> StageOutcome[ContentAnalysis]:
        """Stage 2: structured description of the product photo."""

        image = await self._images.load(task.product_image_path)
        response = await self._providers.content_analyzer.analyze_content(image)
        analysis = ContentAnalysis.from_dict(response.payload)
        if analysis.to_dict() == ContentAnalysis().to_dict():
            raise StageExecutionError(
                int(Stage.CONTENT_ANALYSIS),
                "content analysis returned no product sections",
            )
        return StageOutcome(output=analysis, model=response.call.model, calls=[response.call])

    async def synthesize_prompt(
        self,
        task: TaskView,
        style: StyleAnalysis,
        content: ContentAnalysis,
    ) -> StageOutcome[str]:
        """Stage 3: merge analyses and marketing metadata into one prompt."""

        template = (
            get_template(task.style_template_id or "")
            if task.generation_mode == GenerationMode.TEMPLATE
            else None
        )
        synthesizer = self._providers.prompt_synthesizer
        prompt = await synthesizer.synthesize(
            PromptRequest(
                style=style,
                content=content,
                generation_mode=task.generation_mode,
                product_info=task.product_info,
                reference_name=task.reference_name,
                reference_category=task.reference_category,
                scene_type=template.scene_type if template else None,
                scene_description=template.scene_description if template else None,
            ),
        )
        if not prompt.strip():
            raise StageExecutionError(int(Stage.PROMPT_SYNTHESIS), "empty prompt")
        return StageOutcome(output=prompt, model=synthesizer.name)

    async def generate_images(
        self,
        task: TaskView,
        prompt: str,
        models: Sequence[str],
    ) -> StageOutcome[list[ResultImage]]:
        """Stage 4: one image per selected model; fails only when every model fails."""

        outcome = await self.generate_for_models(task, prompt, models)
        if not outcome.succeeded:
            errors = "; ".join(
                f"{result.model}: {result.error}" for result in outcome.results if result.error
            )
            raise StageExecutionError(
                int(Stage.IMAGE_GENERATION),
                f"all image models failed ({errors or 'no models selected'})",
            )
        return StageOutcome(
            output=outcome.results,
            model=",".join(result.model for result in outcome.succeeded),
            calls=outcome.calls,
        )

    async def generate_for_models(
        self,
        task: TaskView,
        prompt: str,
        models: Sequence[str],
    ) -> ImageBatchOutcome:
        """Generate concurrently, converting per-model failures into error results."""

        product_image = await self._images.load(task.product_image_path)
        style_reference = (
            await self._images.load(task.reference_image_path)
            if task.generation_mode == GenerationMode.REFERENCE and task.reference_image_path
            else None
        )
        settled = await asyncio.gather(
            *(
                self._generate_one(task, model_id, prompt, product_image, style_reference)
                for model_id in models
            ),
        )
        results = [result for result, _ in settled]
        calls = [call for _, call in settled if call is not None]
        return ImageBatchOutcome(results=results, calls=calls)

    async def _generate_one(  # noqa: PLR0913
        self,
        task: TaskView,
        model_id: str,
        prompt: str,
        product_image: bytes,
        style_reference: bytes | None,
    ) -> tuple[ResultImage, ProviderCall | None]:
        started = time.monotonic()
        spec = self._catalog.get(model_id)
        created_at = utc_now().isoformat()
        if spec is None:
            return (
                ResultImage(
                    provider="unknown",
                    model=model_id,
                    created_at=created_at,
                    error="unknown model",
                ),
                None,
            )
        try:
            generator = self._providers.generator_for(spec.provider)
            generated = await generator.generate(
                ImageRequest(
                    product_image=product_image,
                    prompt=prompt,
                    model=spec.provider_model,
                    style_reference=style_reference,
                    resolution=task.image_resolution,
                ),
            )
            path = await self._images.save_generated(task.task_id, generated, model_id=model_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Task %s: model %s failed: %s", task.task_id, model_id, exc)
            return (
                ResultImage(
                    provider=spec.provider,
                    model=model_id,
                    created_at=created_at,
                    error=str(exc),
                    duration_ms=int((time.monotonic() - started) * 1000),
                ),
                None,
            )
        call = generated.call
        if spec.fixed_cost is not None and call.fixed_cost is None:
            call.fixed_cost = spec.fixed_cost
            call.currency_class = spec.currency_class
        return (
            ResultImage(
                provider=spec.provider,
                model=model_id,
                created_at=created_at,
                path=path,
                cost=call.fixed_cost,
                currency_class=call.currency_class,
                duration_ms=int((time.monotonic() - started) * 1000),
            ),
            call,
        )
