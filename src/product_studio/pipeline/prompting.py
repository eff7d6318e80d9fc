"""Deterministic prompt synthesis from the stage 1 and stage 2 analyses."""

from __future__ import annotations

from typing import Any

from product_studio.pipeline.models import GenerationMode
from product_studio.providers.base import PromptRequest

CLOSING = (
    "Generate a high-quality, professional product photography image with studio lighting.\n"
    "No text, no watermarks. Clean, commercial-grade e-commerce visual."
)


class LocalPromptSynthesizer:
    """Builds the generation prompt without an external call."""

    name = "local"

    async def synthesize(self, request: PromptRequest) -> str:
        return build_prompt(request)


def build_prompt(request: PromptRequest) -> str:
    layout = request.style.layout
    style = request.style.style
    content = request.content
    main_object = _section(layout, "main_object")
    background = _section(layout, "background_structure")
    color_style = _section(style, "color_style")
    lighting = _section(style, "lighting")
    texture = _section(style, "texture")

    lines = [
        "Create a professional e-commerce product image with the following specifications:",
        "",
        "=== LAYOUT REQUIREMENTS ===",
        f"- Main subject position: {_text(main_object.get('position'))}",
        f"- View angle: {_text(main_object.get('view_angle'))}",
        f"- Background type: {_text(background.get('type'))}",
        f"- Layer sequence: {_joined(layout.get('layer_sequence'), ' -> ')}",
        "",
        "=== STYLE REQUIREMENTS ===",
        f"- Primary color: {_text(color_style.get('primary_color'))}",
        f"- Secondary colors: {_joined(color_style.get('secondary_colors'), ', ')}",
        f"- Lighting: {_text(lighting.get('type'))} from {_text(lighting.get('direction'))}",
        f"- Surface texture: {_text(texture.get('surface'))}",
        f"- Overall vibe: {_text(request.style.vibe)}",
        "",
        "=== PRODUCT DETAILS ===",
        f"- Product shape: {_text(content.product_shape.get('category'))}",
        f"- Material: {_text(content.product_surface.get('material'))}",
        f"- Facing: {_text(content.product_orientation.get('facing'))}",
        f"- Primary color: {_text(content.color_profile.get('primary_color'))}",
    ]
    if request.style.ocr_texts:
        lines += ["", "=== REFERENCE TEXT (OCR) ===", *(f"- {t}" for t in request.style.ocr_texts)]
    lines += _metadata_lines(request)
    if request.generation_mode == GenerationMode.TEMPLATE and request.scene_type:
        lines += [
            "",
            "=== SCENE ===",
            f"- Scene type: {request.scene_type}",
            f"- Scene description: {_text(request.scene_description)}",
        ]
    lines += ["", "=== STYLE PROMPT ===", request.style.style_prompt, "", CLOSING]
    return "\n".join(lines)


def _metadata_lines(request: PromptRequest) -> list[str]:
    lines: list[str] = []
    info = request.product_info
    if info is not None and not info.is_empty():
        if info.product_name:
            lines.append(f"- Product name: {info.product_name}")
        if info.product_category:
            lines.append(f"- Category: {info.product_category}")
        if info.selling_points:
            lines.append(f"- Selling points: {info.selling_points}")
        if info.target_audience:
            lines.append(f"- Target audience: {info.target_audience}")
        if info.brand_tone:
            lines.append(f"- Brand tone: {', '.join(info.brand_tone)}")
    if request.reference_name:
        lines.append(f"- Reference product: {request.reference_name}")
    if request.reference_category:
        lines.append(f"- Reference category: {request.reference_category}")
    if not lines:
        return []
    return ["", "=== MARKETING CONTEXT ===", *lines]


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    if value is None or value == "":
        return "unspecified"
    return str(value)


def _joined(value: Any, separator: str) -> str:
    if isinstance(value, list) and value:
        return separator.join(str(item) for item in value)
    return "unspecified"
