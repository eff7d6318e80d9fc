"""Domain models for generation tasks, batches and the cost ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

TOTAL_STEPS = 4
REGENERATION_STEP = 5


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    ANALYZING_REFERENCE = "analyzing_reference"
    ANALYZING_CONTENT = "analyzing_content"
    GENERATING_PROMPT = "generating_prompt"
    GENERATING_IMAGE = "generating_image"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    """Aggregate batch states derived from child task states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL_FAILED = "partial_failed"


class GenerationMode(str, Enum):
    """Where the style of the generated image comes from."""

    REFERENCE = "reference"
    TEMPLATE = "template"


class CurrencyClass(str, Enum):
    """How a paid call is priced."""

    METERED_USD = "metered_usd"
    FIXED_CNY = "fixed_cny"


class Stage(IntEnum):
    """The four ordered pipeline stages."""

    REFERENCE_ANALYSIS = 1
    CONTENT_ANALYSIS = 2
    PROMPT_SYNTHESIS = 3
    IMAGE_GENERATION = 4

    @property
    def status(self) -> TaskStatus:
        return STAGE_STATUSES[self]


STAGE_STATUSES: dict[Stage, TaskStatus] = {
    Stage.REFERENCE_ANALYSIS: TaskStatus.ANALYZING_REFERENCE,
    Stage.CONTENT_ANALYSIS: TaskStatus.ANALYZING_CONTENT,
    Stage.PROMPT_SYNTHESIS: TaskStatus.GENERATING_PROMPT,
    Stage.IMAGE_GENERATION: TaskStatus.GENERATING_IMAGE,
}

STEP_DESCRIPTIONS: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "Waiting to start...",
    TaskStatus.ANALYZING_REFERENCE: "Analyzing reference layout and style...",
    TaskStatus.ANALYZING_CONTENT: "Analyzing product content...",
    TaskStatus.GENERATING_PROMPT: "Synthesizing generation prompt...",
    TaskStatus.GENERATING_IMAGE: "Generating final images...",
    TaskStatus.COMPLETED: "Generation completed.",
    TaskStatus.FAILED: "Generation failed.",
}


def derive_batch_status(*, total: int, completed: int, failed: int) -> BatchStatus:
    """Aggregate batch status from child counts; pure and idempotent."""

    if completed + failed < total:
        return BatchStatus.PROCESSING
    if failed == 0:
        return BatchStatus.COMPLETED
    if completed == 0:
        return BatchStatus.FAILED
    return BatchStatus.PARTIAL_FAILED


@dataclass(slots=True)
class StyleAnalysis:
    """Layout and visual style extracted from a reference image or preset."""

    layout: dict[str, Any] = field(default_factory=dict)
    style: dict[str, Any] = field(default_factory=dict)
    ocr_texts: list[str] = field(default_factory=list)

    @property
    def style_prompt(self) -> str:
        return str(self.style.get("style_prompt") or "")

    @property
    def vibe(self) -> str:
        return str(self.style.get("vibe") or "")

    def to_dict(self) -> dict[str, Any]:
        return {"layout": self.layout, "style": self.style, "ocr_texts": list(self.ocr_texts)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StyleAnalysis:
        layout = payload.get("layout")
        style = payload.get("style")
        ocr_texts = payload.get("ocr_texts")
        return cls(
            layout=layout if isinstance(layout, dict) else {},
            style=style if isinstance(style, dict) else {},
            ocr_texts=[str(text) for text in ocr_texts] if isinstance(ocr_texts, list) else [],
        )


_CONTENT_SECTIONS = (
    "product_shape",
    "product_orientation",
    "product_regions",
    "product_surface",
    "product_texture",
    "color_profile",
)


@dataclass(slots=True)
class ContentAnalysis:
    """Structured description of the product in the product photo."""

    product_shape: dict[str, Any] = field(default_factory=dict)
    product_orientation: dict[str, Any] = field(default_factory=dict)
    product_regions: dict[str, Any] = field(default_factory=dict)
    product_surface: dict[str, Any] = field(default_factory=dict)
    product_texture: dict[str, Any] = field(default_factory=dict)
    color_profile: dict[str, Any] = field(default_factory=dict)
    defects: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {name: getattr(self, name) for name in _CONTENT_SECTIONS}
        payload["defects"] = list(self.defects)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ContentAnalysis:
        sections = {
            name: payload[name] if isinstance(payload.get(name), dict) else {}
            for name in _CONTENT_SECTIONS
        }
        defects = payload.get("defects")
        return cls(
            **sections,
            defects=[str(item) for item in defects] if isinstance(defects, list) else [],
        )


@dataclass(slots=True)
class ProductInfo:
    """Optional marketing metadata supplied with a submission."""

    product_name: str | None = None
    product_category: str | None = None
    selling_points: str | None = None
    target_audience: str | None = None
    brand_tone: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.product_name
            or self.product_category
            or self.selling_points
            or self.target_audience
            or self.brand_tone
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_name": self.product_name,
            "product_category": self.product_category,
            "selling_points": self.selling_points,
            "target_audience": self.target_audience,
            "brand_tone": list(self.brand_tone),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProductInfo:
        brand_tone = payload.get("brand_tone")
        return cls(
            product_name=payload.get("product_name"),
            product_category=payload.get("product_category"),
            selling_points=payload.get("selling_points"),
            target_audience=payload.get("target_audience"),
            brand_tone=tuple(brand_tone) if isinstance(brand_tone, list) else (),
        )


@dataclass(slots=True)
class ResultImage:
    """One generated image (or one failed generation attempt) for a task."""

    provider: str
    model: str
    created_at: str
    path: str | None = None
    error: str | None = None
    cost: float | None = None
    currency_class: CurrencyClass | None = None
    duration_ms: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.path is not None and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "created_at": self.created_at,
            "path": self.path,
            "error": self.error,
            "cost": self.cost,
            "currency_class": self.currency_class.value if self.currency_class else None,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ResultImage:
        currency = payload.get("currency_class")
        return cls(
            provider=str(payload.get("provider") or "unknown"),
            model=str(payload.get("model") or "unknown"),
            created_at=str(payload.get("created_at") or ""),
            path=payload.get("path"),
            error=payload.get("error"),
            cost=payload.get("cost"),
            currency_class=CurrencyClass(currency) if currency else None,
            duration_ms=payload.get("duration_ms"),
        )


@dataclass(slots=True)
class UsedModels:
    """Which external model served each stage."""

    reference_analysis: str | None = None
    content_analysis: str | None = None
    prompt_synthesis: str | None = None
    image_generation: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference_analysis": self.reference_analysis,
            "content_analysis": self.content_analysis,
            "prompt_synthesis": self.prompt_synthesis,
            "image_generation": list(self.image_generation),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> UsedModels:
        images = payload.get("image_generation")
        return cls(
            reference_analysis=payload.get("reference_analysis"),
            content_analysis=payload.get("content_analysis"),
            prompt_synthesis=payload.get("prompt_synthesis"),
            image_generation=[str(model) for model in images] if isinstance(images, list) else [],
        )


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating one generation task."""

    product_image_path: str
    generation_mode: GenerationMode
    selected_models: tuple[str, ...]
    reference_image_path: str | None = None
    style_template_id: str | None = None
    reference_name: str | None = None
    reference_category: str | None = None
    product_info: ProductInfo | None = None
    image_resolution: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class BatchMaterial:
    """One product image inside a batch submission."""

    path: str
    name: str | None = None


@dataclass(slots=True)
class BatchTaskCreate:
    """Input payload for creating a batch and all of its child tasks."""

    materials: list[BatchMaterial]
    generation_mode: GenerationMode
    selected_models: tuple[str, ...]
    reference_image_path: str | None = None
    style_template_id: str | None = None
    reference_name: str | None = None
    reference_category: str | None = None
    product_info: ProductInfo | None = None
    image_resolution: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for the state machine, CLI and status boundary."""

    task_id: str
    status: TaskStatus
    current_step: int
    total_steps: int
    generation_mode: GenerationMode
    product_image_path: str
    reference_image_path: str | None
    style_template_id: str | None
    batch_id: str | None
    batch_index: int | None
    selected_models: tuple[str, ...]
    product_info: ProductInfo | None
    reference_name: str | None
    reference_category: str | None
    image_resolution: str | None
    style_analysis: StyleAnalysis | None
    content_analysis: ContentAnalysis | None
    generated_prompt: str | None
    result_images: list[ResultImage]
    result_image_path: str | None
    used_models: UsedModels | None
    failed_step: int | None
    error_message: str | None
    total_cost: float
    claimed_by: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


@dataclass(slots=True)
class BatchTaskView:
    """Readable batch view with aggregate counters."""

    batch_id: str
    status: BatchStatus
    generation_mode: GenerationMode
    reference_image_path: str | None
    style_template_id: str | None
    reference_name: str | None
    reference_category: str | None
    product_info: ProductInfo | None
    selected_models: tuple[str, ...]
    image_resolution: str | None
    total_count: int
    completed_count: int
    failed_count: int
    shared_analysis: StyleAnalysis | None
    claimed_by: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def min_start_stage(self) -> Stage:
        """First stage each child runs itself."""

        if self.generation_mode == GenerationMode.TEMPLATE:
            return Stage.REFERENCE_ANALYSIS
        return Stage.CONTENT_ANALYSIS


@dataclass(slots=True)
class CostMetadata:
    """Optional usage metrics attached to a cost entry."""

    call_id: str | None = None
    model: str | None = None
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    latency_ms: int | None = None


@dataclass(slots=True)
class CostEntryView:
    """Stored ledger row for one priced external call."""

    entry_id: int
    task_id: str
    stage: int
    call_id: str | None
    model: str | None
    amount: float
    currency_class: CurrencyClass
    tokens_prompt: int | None
    tokens_completion: int | None
    latency_ms: int | None
    created_at: datetime


@dataclass(slots=True)
class CostSummary:
    """Spend split by currency class plus a display-only reference total."""

    by_class: dict[CurrencyClass, float]
    calls: int
    reference_total: float
    reference_currency: CurrencyClass = CurrencyClass.FIXED_CNY


RATING_DIMENSIONS = ("quality", "style_match", "fidelity", "creativity")


@dataclass(slots=True)
class RatingInput:
    """Scores for a whole task, or for one generated image when `image_path` is set."""

    task_id: str
    overall: int
    image_path: str | None = None
    quality: int | None = None
    style_match: int | None = None
    fidelity: int | None = None
    creativity: int | None = None
    comment: str | None = None

    def dimensions(self) -> dict[str, int | None]:
        return {name: getattr(self, name) for name in RATING_DIMENSIONS}


@dataclass(slots=True)
class RatingView:
    """Stored rating; `image_path` is None for the task-level rating."""

    rating_id: int
    task_id: str
    image_path: str | None
    provider: str | None
    model: str | None
    overall: int
    quality: int | None
    style_match: int | None
    fidelity: int | None
    creativity: int | None
    comment: str | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "rating_id": self.rating_id,
            "task_id": self.task_id,
            "image_path": self.image_path,
            "provider": self.provider,
            "model": self.model,
            "overall": self.overall,
            **{name: getattr(self, name) for name in RATING_DIMENSIONS},
            "comment": self.comment,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class RatingSummary:
    """Task rating, image ratings and per-dimension averages over the image ratings."""

    task_rating: RatingView | None
    image_ratings: list[RatingView]
    rated_images: int
    total_images: int
    averages: dict[str, float]
