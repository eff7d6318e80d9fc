"""Image model catalog: which provider serves each selectable model id."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from product_studio.config import Settings
from product_studio.pipeline.models import CurrencyClass

logger = logging.getLogger(__name__)

OPENROUTER_GEMINI_IMAGE = "openrouter-gemini-image"
JIMENG_SEEDREAM = "jimeng-seedream"


@dataclass(frozen=True, slots=True)
class ImageModelSpec:
    """One selectable image model."""

    model_id: str
    provider: str
    label: str
    provider_model: str
    currency_class: CurrencyClass
    fixed_cost: float | None = None


def build_image_catalog(settings: Settings) -> dict[str, ImageModelSpec]:
    """Catalog keyed by model id, with provider model names taken from settings."""

    specs = (
        ImageModelSpec(
            model_id=OPENROUTER_GEMINI_IMAGE,
            provider="openrouter",
            label="Gemini image (OpenRouter)",
            provider_model=settings.openrouter.image_model,
            currency_class=CurrencyClass.METERED_USD,
        ),
        ImageModelSpec(
            model_id=JIMENG_SEEDREAM,
            provider="jimeng",
            label="Seedream (Jimeng)",
            provider_model=settings.jimeng.model,
            currency_class=CurrencyClass.FIXED_CNY,
            fixed_cost=settings.jimeng.cost_per_image,
        ),
    )
    return {spec.model_id: spec for spec in specs}


def resolve_selected_models(
    requested: Iterable[str],
    catalog: dict[str, ImageModelSpec],
    *,
    defaults: Iterable[str],
    limit: int,
) -> tuple[str, ...]:
    """Keep known ids in request order, drop duplicates, cap at `limit`.

    Falls back to the known defaults when nothing valid was requested.
    """

    selected: list[str] = []
    for model_id in requested:
        if model_id not in catalog:
            logger.warning("Ignoring unknown image model %r", model_id)
            continue
        if model_id not in selected:
            selected.append(model_id)
    if not selected:
        selected = [model_id for model_id in defaults if model_id in catalog]
    return tuple(selected[:limit])
