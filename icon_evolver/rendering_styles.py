"""
rendering_styles.py — Named presets for the "output requirements" block.

Each preset is a fixed text fragment describing material, lighting and
composition. `match_seed` is the exception: its fragment is built from the
seed icon's analysed style so the evolution keeps the original treatment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

MATCH_SEED = "match_seed"
DEFAULT_STYLE = "3d_render"
SEED_STYLE_PLACEHOLDER = "the original visual style"


@dataclass(frozen=True)
class RenderingStyle:
    id: str
    name: str
    description: str
    prompt_fragment: str


RENDERING_STYLES: Dict[str, RenderingStyle] = {
    MATCH_SEED: RenderingStyle(
        id=MATCH_SEED,
        name="Match Original",
        description="Preserve the visual style of your seed icon",
        prompt_fragment="",   # built from IconAnalysis.current_style
    ),
    "3d_render": RenderingStyle(
        id="3d_render",
        name="3D Render",
        description="High-fidelity 3D with soft global illumination",
        prompt_fragment=(
            "- App Store icon format\n"
            "- High-fidelity 3D render\n"
            "- Soft global illumination\n"
            "- Vibrant but professional colors\n"
            "- Clean edges, centered composition\n"
            "- Neutral or subtly gradient background"
        ),
    ),
    "flat": RenderingStyle(
        id="flat",
        name="Flat Design",
        description="Clean, minimal with solid colors, no shadows",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Flat 2D design\n"
            "- Solid color blocks, no gradients or shadows\n"
            "- Simple geometric shapes\n"
            "- High-contrast palette\n"
            "- Clean edges, centered composition\n"
            "- Solid or simple background"
        ),
    ),
    "minimalist": RenderingStyle(
        id="minimalist",
        name="Minimalist",
        description="Ultra-simplified, essential elements only",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Minimalist style\n"
            "- Only the most essential visual elements\n"
            "- Generous negative space\n"
            "- One or two colors\n"
            "- Simplified lines and shapes\n"
            "- Clean solid background"
        ),
    ),
    "glassmorphism": RenderingStyle(
        id="glassmorphism",
        name="Glassmorphism",
        description="Frosted glass effect with blur and transparency",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Glassmorphism style\n"
            "- Frosted glass with background blur\n"
            "- Translucent layering\n"
            "- Soft light refraction\n"
            "- Fine edge highlights\n"
            "- Gradient or abstract background"
        ),
    ),
    "neo_brutalism": RenderingStyle(
        id="neo_brutalism",
        name="Neo-Brutalism",
        description="Bold colors, thick black outlines, raw aesthetic",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Neo-Brutalism style\n"
            "- Thick black outlines\n"
            "- Bold saturated flat colors\n"
            "- Hard offset shadows\n"
            "- Deliberately raw, unfinished feel\n"
            "- High-contrast color block background"
        ),
    ),
    "claymorphism": RenderingStyle(
        id="claymorphism",
        name="Claymorphism",
        description="Soft clay-like 3D with rounded edges",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Claymorphism style\n"
            "- Soft clay material\n"
            "- Rounded edges and corners\n"
            "- Gentle inner and outer shadows\n"
            "- Warm pastel palette\n"
            "- Dimensional but never sharp\n"
            "- Soft gradient background"
        ),
    ),
    "pixel_art": RenderingStyle(
        id="pixel_art",
        name="Pixel Art",
        description="Retro 8-bit/16-bit pixel aesthetic",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Pixel art style\n"
            "- 8-bit or 16-bit retro aesthetic\n"
            "- Crisp visible pixel edges\n"
            "- Limited palette\n"
            "- Nostalgic game feel\n"
            "- Solid or simple pixel background"
        ),
    ),
    "isometric": RenderingStyle(
        id="isometric",
        name="Isometric 3D",
        description="3D isometric projection view",
        prompt_fragment=(
            "- App Store icon format\n"
            "- Isometric 3D style\n"
            "- Isometric projection\n"
            "- Precise 30 degree angles\n"
            "- Clear dimensional layering\n"
            "- Clean geometric lines\n"
            "- Vibrant but harmonious colors\n"
            "- Neutral or gradient background"
        ),
    ),
}


def get_rendering_style_prompt(style_id: str, seed_style: Optional[str] = None) -> str:
    """
    Output-requirements fragment for a style id.

    `match_seed` interpolates the seed icon's style (or a placeholder when the
    analysis has none); unknown ids fall back to the 3D render preset.
    """
    if style_id == MATCH_SEED:
        style_description = (seed_style or "").strip() or SEED_STYLE_PLACEHOLDER
        return (
            "- App Store icon format\n"
            f"- Keep the original visual style: {style_description}\n"
            "- Match the seed icon's rendering quality and texture\n"
            "- Clean edges, centered composition\n"
            "- Colors in harmony with the original icon\n"
            "- Must feel like a natural evolution of the seed icon"
        )

    style = RENDERING_STYLES.get(style_id)
    if style is None:
        return RENDERING_STYLES[DEFAULT_STYLE].prompt_fragment
    return style.prompt_fragment


def is_known_style(style_id: str) -> bool:
    return style_id in RENDERING_STYLES


def all_rendering_styles() -> List[RenderingStyle]:
    return list(RENDERING_STYLES.values())
