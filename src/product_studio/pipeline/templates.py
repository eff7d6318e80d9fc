"""Preset style templates used in template mode instead of a reference image."""

from __future__ import annotations

import copy
from dataclasses import dataclass

from product_studio.pipeline.models import StyleAnalysis


@dataclass(frozen=True, slots=True)
class StyleTemplate:
    template_id: str
    name: str
    category: str
    description: str
    scene_type: str
    scene_description: str
    suitable_products: tuple[str, ...]
    layout: dict
    style: dict

    def preset_analysis(self) -> StyleAnalysis:
        """Fresh copy so callers cannot mutate the preset."""

        return StyleAnalysis.from_dict(copy.deepcopy({"layout": self.layout, "style": self.style}))


_TEMPLATES = (
    StyleTemplate(
        template_id="natural-fresh",
        name="Natural fresh",
        category="food",
        description="Green natural backdrop that stresses healthy, organic ingredients.",
        scene_type="outdoor_nature",
        scene_description="Product on a mossy stone among fresh leaves, morning sunlight.",
        suitable_products=("natural food", "freeze-dried snacks", "organic products"),
        layout={
            "main_object": {
                "position": "center",
                "size": "product fills about 60% of the frame",
                "view_angle": "eye level, slightly from above",
                "edge_crop": False,
            },
            "background_structure": {
                "type": "gradient with natural elements",
                "layers": ["light-to-deep green gradient", "leaves and grass", "product"],
                "decorations": ["leaves", "grass", "sunlight flecks", "dew drops"],
            },
            "text_blocks": [],
            "layer_sequence": ["background", "decorations", "product", "light_effects"],
        },
        style={
            "color_style": {
                "primary_color": "#4CAF50",
                "secondary_colors": ["#8BC34A", "#FFFFFF", "#F5F5DC"],
                "saturation": "medium-high, fresh",
                "brightness": "bright, sunny",
            },
            "lighting": {"direction": "top front", "type": "soft", "shadow_intensity": "light"},
            "texture": {"surface": "natural matte", "reflection": "low"},
            "vibe": "healthy, natural, fresh",
            "style_prompt": (
                "Fresh natural green background with leaves and grass, soft sunlight, "
                "healthy organic vibe, product photography"
            ),
        },
    ),
    StyleTemplate(
        template_id="premium-dark",
        name="Premium dark",
        category="supplies",
        description="Dark studio look with rim light for premium positioning.",
        scene_type="studio",
        scene_description="Product on a black glossy plinth, single rim light, faint haze.",
        suitable_products=("premium food", "grooming tools", "gift boxes"),
        layout={
            "main_object": {
                "position": "center",
                "size": "product fills about 50% of the frame",
                "view_angle": "eye level",
                "edge_crop": False,
            },
            "background_structure": {
                "type": "solid dark with vignette",
                "layers": ["charcoal backdrop", "plinth", "product"],
                "decorations": ["subtle haze", "reflection on plinth"],
            },
            "text_blocks": [],
            "layer_sequence": ["background", "plinth", "product", "rim_light"],
        },
        style={
            "color_style": {
                "primary_color": "#1C1C1C",
                "secondary_colors": ["#C9A227", "#3A3A3A"],
                "saturation": "low",
                "brightness": "low key",
            },
            "lighting": {
                "direction": "back and side",
                "type": "hard rim",
                "shadow_intensity": "deep",
            },
            "texture": {"surface": "glossy", "reflection": "strong on plinth"},
            "vibe": "luxurious, refined, calm",
            "style_prompt": (
                "Low-key premium studio shot, black glossy surface, golden rim light, "
                "elegant reflections, luxury product photography"
            ),
        },
    ),
    StyleTemplate(
        template_id="festival-promo",
        name="Festival promotion",
        category="promotion",
        description="Red and gold sale-event look for shopping festivals.",
        scene_type="festive_promotion",
        scene_description="Product on a red podium with gold ribbons, confetti and lanterns.",
        suitable_products=("bundles", "gift sets", "promotional packs"),
        layout={
            "main_object": {
                "position": "center",
                "size": "product fills about 55% of the frame",
                "view_angle": "slightly from below",
                "edge_crop": False,
            },
            "background_structure": {
                "type": "radial burst",
                "layers": ["red radial gradient", "confetti and ribbons", "podium", "product"],
                "decorations": ["confetti", "gold ribbons", "lanterns"],
            },
            "text_blocks": [{"type": "badge", "position": "top right", "has_mask": True}],
            "layer_sequence": ["background", "decorations", "podium", "product", "badge"],
        },
        style={
            "color_style": {
                "primary_color": "#D32F2F",
                "secondary_colors": ["#FFD700", "#FFFFFF"],
                "saturation": "high",
                "brightness": "bright",
            },
            "lighting": {"direction": "front", "type": "bright even", "shadow_intensity": "soft"},
            "texture": {"surface": "glossy festive", "reflection": "sparkles"},
            "vibe": "festive, energetic, celebratory",
            "style_prompt": (
                "Festive red and gold shopping-festival scene, confetti, ribbons, "
                "bright celebratory lighting, promotional product photography"
            ),
        },
    ),
)

TEMPLATES: dict[str, StyleTemplate] = {template.template_id: template for template in _TEMPLATES}


def get_template(template_id: str) -> StyleTemplate | None:
    return TEMPLATES.get(template_id)


def list_templates(category: str | None = None) -> list[StyleTemplate]:
    return [
        template
        for template in _TEMPLATES
        if category is None or template.category == category
    ]
