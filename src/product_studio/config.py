"""Runtime configuration for the image generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_IMAGE_MODELS: tuple[str, ...] = ("openrouter-gemini-image",)


@dataclass(slots=True)
class PipelineSettings:
    """Task and batch execution limits."""

    batch_concurrency: int = 3
    max_batch_size: int = 10
    max_selected_models: int = 3
    max_images_per_task: int = 6
    default_image_models: tuple[str, ...] = DEFAULT_IMAGE_MODELS


@dataclass(slots=True)
class HttpSettings:
    """Timeout and retry policy applied to every external call."""

    timeout_seconds: float = 120.0
    max_retries: int = 1
    retry_delay_seconds: float = 1.0


@dataclass(slots=True)
class OpenRouterSettings:
    """OpenRouter vision, image and generation-cost endpoints."""

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    vision_model: str = "google/gemini-2.5-flash"
    image_model: str = "google/gemini-2.5-flash-image"
    site_url: str = ""
    site_name: str = ""


@dataclass(slots=True)
class OcrSettings:
    """Baidu OCR credentials and access-token refresh policy."""

    api_key: str = ""
    secret_key: str = ""
    token_refresh_margin_seconds: int = 3_600


@dataclass(slots=True)
class JimengSettings:
    """Seedream (Jimeng) fixed-price image generation."""

    api_key: str = ""
    model: str = "doubao-seedream-4-0-250828"
    endpoint: str = "https://ark.cn-beijing.volces.com/api/v3/images/generations"
    cost_per_image: float = 0.2
    resolution: str = "2048x2048"


@dataclass(slots=True)
class CostSettings:
    """Display-only conversion between currency classes."""

    metered_to_fixed_rate: float = 7.2


@dataclass(slots=True)
class StorageSettings:
    """Filesystem locations for uploaded and generated images."""

    image_root: Path = Path(".product_studio")
    result_dir: str = "results"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".product_studio.db")
    mock_providers: bool = False
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    openrouter: OpenRouterSettings = field(default_factory=OpenRouterSettings)
    ocr: OcrSettings = field(default_factory=OcrSettings)
    jimeng: JimengSettings = field(default_factory=JimengSettings)
    cost: CostSettings = field(default_factory=CostSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("PRODUCT_STUDIO_DB_PATH", ".product_studio.db")),
            mock_providers=_env_bool("PRODUCT_STUDIO_MOCK_PROVIDERS", default=False),
            pipeline=PipelineSettings(
                batch_concurrency=int(os.getenv("PRODUCT_STUDIO_BATCH_CONCURRENCY", "3")),
                max_batch_size=int(os.getenv("PRODUCT_STUDIO_MAX_BATCH_SIZE", "10")),
                max_selected_models=int(os.getenv("PRODUCT_STUDIO_MAX_SELECTED_MODELS", "3")),
                max_images_per_task=int(os.getenv("PRODUCT_STUDIO_MAX_IMAGES_PER_TASK", "6")),
                default_image_models=_env_csv(
                    "PRODUCT_STUDIO_DEFAULT_IMAGE_MODELS",
                    default=DEFAULT_IMAGE_MODELS,
                ),
            ),
            http=HttpSettings(
                timeout_seconds=float(os.getenv("PRODUCT_STUDIO_HTTP_TIMEOUT_SECONDS", "120")),
                max_retries=int(os.getenv("PRODUCT_STUDIO_HTTP_MAX_RETRIES", "1")),
                retry_delay_seconds=float(
                    os.getenv("PRODUCT_STUDIO_HTTP_RETRY_DELAY_SECONDS", "1.0"),
                ),
            ),
            openrouter=OpenRouterSettings(
                api_key=os.getenv("OPENROUTER_API_KEY", ""),
                base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
                vision_model=os.getenv("OPENROUTER_VISION_MODEL", "google/gemini-2.5-flash"),
                image_model=os.getenv("OPENROUTER_IMAGE_MODEL", "google/gemini-2.5-flash-image"),
                site_url=os.getenv("OPENROUTER_SITE_URL", ""),
                site_name=os.getenv("OPENROUTER_SITE_NAME", ""),
            ),
            ocr=OcrSettings(
                api_key=os.getenv("BAIDU_OCR_API_KEY", ""),
                secret_key=os.getenv("BAIDU_OCR_SECRET_KEY", ""),
                token_refresh_margin_seconds=int(
                    os.getenv("PRODUCT_STUDIO_OCR_TOKEN_REFRESH_MARGIN_SECONDS", "3600"),
                ),
            ),
            jimeng=JimengSettings(
                api_key=os.getenv("JIMEN_API_KEY", ""),
                model=os.getenv("JIMEN_MODEL", "doubao-seedream-4-0-250828"),
                cost_per_image=float(os.getenv("PRODUCT_STUDIO_JIMENG_COST_PER_IMAGE", "0.2")),
                resolution=os.getenv("PRODUCT_STUDIO_JIMENG_RESOLUTION", "2048x2048"),
            ),
            cost=CostSettings(
                metered_to_fixed_rate=float(
                    os.getenv("PRODUCT_STUDIO_METERED_TO_FIXED_RATE", "7.2"),
                ),
            ),
            storage=StorageSettings(
                image_root=Path(os.getenv("PRODUCT_STUDIO_IMAGE_ROOT", ".product_studio")),
                result_dir=os.getenv("PRODUCT_STUDIO_RESULT_DIR", "results"),
            ),
        )

    def validate_for_processing(self) -> None:
        """Raise configuration error if limits or provider credentials are unusable."""

        if self.pipeline.batch_concurrency <= 0:
            raise ValueError("PRODUCT_STUDIO_BATCH_CONCURRENCY must be > 0.")
        if self.pipeline.max_batch_size <= 0:
            raise ValueError("PRODUCT_STUDIO_MAX_BATCH_SIZE must be > 0.")
        if self.pipeline.max_selected_models <= 0:
            raise ValueError("PRODUCT_STUDIO_MAX_SELECTED_MODELS must be > 0.")
        if self.pipeline.max_images_per_task <= 0:
            raise ValueError("PRODUCT_STUDIO_MAX_IMAGES_PER_TASK must be > 0.")
        if self.http.timeout_seconds <= 0:
            raise ValueError("PRODUCT_STUDIO_HTTP_TIMEOUT_SECONDS must be > 0.")
        if self.http.max_retries < 0:
            raise ValueError("PRODUCT_STUDIO_HTTP_MAX_RETRIES must be >= 0.")
        if self.cost.metered_to_fixed_rate <= 0:
            raise ValueError("PRODUCT_STUDIO_METERED_TO_FIXED_RATE must be > 0.")
        if self.mock_providers:
            return
        if not self.openrouter.api_key:
            raise ValueError(
                "OPENROUTER_API_KEY is required unless PRODUCT_STUDIO_MOCK_PROVIDERS=1.",
            )


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
