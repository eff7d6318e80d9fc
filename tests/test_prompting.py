from __future__ import annotations

import asyncio

import allure

from product_studio.pipeline.models import (
    ContentAnalysis,
    GenerationMode,
    ProductInfo,
    StyleAnalysis,
)
from product_studio.pipeline.prompting import LocalPromptSynthesizer, build_prompt
from product_studio.pipeline.templates import TEMPLATES, get_template, list_templates
from product_studio.providers.base import PromptRequest

pytestmark = [
    allure.epic("Pipeline Engine"),
    allure.feature("Prompt Synthesis & Templates"),
]


def _style() -> StyleAnalysis:
    return StyleAnalysis(
        layout={
            "main_object": {"position": "left third", "view_angle": "45 degrees"},
            "layer_sequence": ["background", "product"],
        },
        style={
            "color_style": {"primary_color": "#FFFFFF", "secondary_colors": ["#000000"]},
            "vibe": "minimal",
            "style_prompt": "airy minimal studio",
        },
        ocr_texts=["NEW ARRIVAL"],
    )


def test_prompt_merges_analyses_metadata_and_ocr_text() -> None:
    prompt = build_prompt(
        PromptRequest(
            style=_style(),
            content=ContentAnalysis(
                product_shape={"category": "bottle"},
                product_surface={"material": "glass"},
            ),
            product_info=ProductInfo(product_name="Cold brew", brand_tone=("bold", "urban")),
            reference_name="Rival brew",
        ),
    )

    assert "- Main subject position: left third" in prompt
    assert "- Layer sequence: background -> product" in prompt
    assert "- Product shape: bottle" in prompt
    assert "- Material: glass" in prompt
    assert "NEW ARRIVAL" in prompt
    assert "- Product name: Cold brew" in prompt
    assert "- Brand tone: bold, urban" in prompt
    assert "- Reference product: Rival brew" in prompt
    assert "airy minimal studio" in prompt
    assert "=== SCENE ===" not in prompt


def test_prompt_marks_missing_values_and_skips_empty_context() -> None:
    prompt = build_prompt(PromptRequest(style=StyleAnalysis(), content=ContentAnalysis()))

    assert "- Background type: unspecified" in prompt
    assert "- Product shape: unspecified" in prompt
    assert "MARKETING CONTEXT" not in prompt
    assert "REFERENCE TEXT" not in prompt


def test_template_mode_prompt_includes_scene() -> None:
    template = get_template("premium-dark")
    assert template is not None

    prompt = asyncio.run(
        LocalPromptSynthesizer().synthesize(
            PromptRequest(
                style=template.preset_analysis(),
                content=ContentAnalysis(product_shape={"category": "box"}),
                generation_mode=GenerationMode.TEMPLATE,
                scene_type=template.scene_type,
                scene_description=template.scene_description,
            ),
        ),
    )

    assert f"- Scene type: {template.scene_type}" in prompt
    assert template.style["style_prompt"] in prompt


def test_preset_analysis_is_a_fresh_copy() -> None:
    template = get_template("natural-fresh")
    assert template is not None

    analysis = template.preset_analysis()
    analysis.layout["main_object"]["position"] = "mutated"

    assert template.preset_analysis().layout["main_object"]["position"] != "mutated"


def test_list_templates_filters_by_category() -> None:
    assert len(list_templates()) == len(TEMPLATES)
    assert [template.template_id for template in list_templates("promotion")] == [
        "festival-promo",
    ]
    assert list_templates("unknown") == []
    assert get_template("unknown") is None
