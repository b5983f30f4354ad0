"""
prompt_builder.py — Deterministic instruction synthesis.

Two generation prompt builders share one layout:

  build_unified_prompt()    — a single evolution direction (current flow)
  build_evolution_prompt()  — four toggleable dimensions (legacy flow)

Both are pure: the CLI preview and the actual generation request call the
same function with the same inputs, so the two strings are always identical.

The module also holds the instruction templates for the analysis,
suggestion and brief stages.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from .models import (
    AppAnalysis,
    AppInfo,
    IconAnalysis,
    PsychographicProfile,
    SelectedDimensions,
    TrendSynthesis,
)
from .rendering_styles import MATCH_SEED, get_rendering_style_prompt
from .trends import TrendFilterResult
from .validators import MAX_DESCRIPTION_LENGTH, MAX_FIELD_LENGTH, sanitize, sanitize_list

DEFAULT_SUBJECT = "original subject"
DEFAULT_FUNCTION = "original function"
DEFAULT_PRESERVE = "core identification elements"
NO_DIMENSION_FALLBACK = "Preserve current style, polish quality only"

# fixed order; labels are what the generation model sees
DIMENSION_LABELS = (
    ("style", "Style evolution"),
    ("pose", "Pose evolution"),
    ("costume", "Costume/prop evolution"),
    ("mood", "Background/mood evolution"),
)


# ── Generation prompts ────────────────────────────────────────────────────────

def preserve_clause(
    icon_analysis: Optional[IconAnalysis],
    function_guard: Optional[Sequence[str]] = None,
) -> str:
    """An explicit guard list replaces must_preserve; it is never merged with it."""
    if function_guard:
        return ", ".join(function_guard)
    if icon_analysis and icon_analysis.must_preserve:
        return ", ".join(icon_analysis.must_preserve)
    return DEFAULT_PRESERVE


def _assemble(
    body_heading: str,
    body: str,
    icon_analysis: Optional[IconAnalysis],
    function_guard: Optional[Sequence[str]],
    additional_prompt: Optional[str],
    rendering_style: Optional[str],
) -> str:
    core_subject = (icon_analysis.core_subject if icon_analysis else "") or DEFAULT_SUBJECT
    app_function = (icon_analysis.app_function if icon_analysis else "") or DEFAULT_FUNCTION
    current_style = icon_analysis.current_style if icon_analysis else None
    additional = f"\nAdditional instructions: {additional_prompt}\n" if additional_prompt else ""

    return (
        "ENTERTAINMENT TREND EVOLUTION MODE: the attached image is the existing app icon (seed icon).\n"
        "\n"
        f"Core subject: {core_subject}\n"
        f"App function: {app_function}\n"
        "\n"
        "Evolution rules:\n"
        f"1. Must preserve: {preserve_clause(icon_analysis, function_guard)}\n"
        "2. The core subject must stay recognisable at a glance - this is an evolution, not a redesign\n"
        "3. Keep the visual hint of what the app does\n"
        "4. Keep the icon format: square, centered, suitable for the App Store\n"
        "\n"
        f"{body_heading}:\n"
        f"{body}\n"
        f"{additional}"
        "\n"
        "Output requirements:\n"
        f"{get_rendering_style_prompt(rendering_style or MATCH_SEED, current_style)}\n"
        "- Must feel like a natural evolution of the seed icon, not a replacement"
    )


def dimension_lines(selected_dimensions: SelectedDimensions) -> List[str]:
    lines = []
    for key, label in DIMENSION_LABELS:
        dimension = getattr(selected_dimensions, key)
        if dimension.is_active:
            lines.append(f"{label}: {dimension.value.strip()}")
    return lines


def has_enabled_dimensions(selected_dimensions: SelectedDimensions) -> bool:
    return any(getattr(selected_dimensions, key).enabled for key, _ in DIMENSION_LABELS)


def build_evolution_prompt(
    selected_dimensions: SelectedDimensions,
    icon_analysis: Optional[IconAnalysis] = None,
    function_guard: Optional[Sequence[str]] = None,
    additional_prompt: Optional[str] = None,
    rendering_style: Optional[str] = None,
) -> str:
    """Legacy four-dimension prompt. No active dimension → quality polish only."""
    lines = dimension_lines(selected_dimensions)
    body = "\n".join(lines) if lines else NO_DIMENSION_FALLBACK
    return _assemble(
        "Selected evolution dimensions",
        body,
        icon_analysis,
        function_guard,
        additional_prompt,
        rendering_style,
    )


def build_unified_prompt(
    evolution_direction: str,
    icon_analysis: Optional[IconAnalysis] = None,
    function_guard: Optional[Sequence[str]] = None,
    additional_prompt: Optional[str] = None,
    rendering_style: Optional[str] = None,
) -> str:
    """Single-direction prompt. evolution_direction is inserted verbatim."""
    return _assemble(
        "Evolution direction",
        evolution_direction,
        icon_analysis,
        function_guard,
        additional_prompt,
        rendering_style,
    )


SEEDED_GENERATION_TEMPLATE = """\
EVOLUTION MODE: The reference image is the CURRENT app icon (seed).

CRITICAL RULES FOR EVOLUTION:
1. PRESERVE the core subject/metaphor from the seed image - it must remain recognizable
2. PRESERVE the general shape, composition, and centering
3. EVOLVE the lighting, materials, textures, and color treatment per the direction below
4. Maintain icon format: square, centered, suitable for app stores

DIRECTION TO EVOLVE INTO:
{prompt}

OUTPUT REQUIREMENTS:
{requirements}
- Must feel like a natural evolution of the seed, not a replacement"""

FRESH_GENERATION_TEMPLATE = """\
Generate a premium mobile app icon from scratch.

SUBJECT: {prompt}

OUTPUT REQUIREMENTS:
{requirements}"""


def build_brief_generation_prompt(prompt: str, has_seed: bool) -> str:
    """Wrap a creative-brief prompt for image generation, seeded or from scratch."""
    template = SEEDED_GENERATION_TEMPLATE if has_seed else FRESH_GENERATION_TEMPLATE
    return template.format(prompt=prompt, requirements=get_rendering_style_prompt("3d_render"))


# ── Stage instructions: evolution flow ───────────────────────────────────────

INSIGHTS_PROMPT_TEMPLATE = """\
You are a cultural trend analyst and app icon design consultant.

Analyse the target audience of the app below, research what entertainment they
have been following recently, and analyse the existing app icon.

App information:
- Name: {name}
- Category: {category}
- Description: {description}

[The attached image is this app's current icon]

Tasks:

## 1. Target audience
- Demographics (age, region, interests)
- Interest areas they are likely to follow

## 2. Entertainment trend insights (last 30 days)
### Movies & TV: 3-5 titles this audience is most likely watching,
    each with its relevance to the audience and borrowable visual elements
### Games: 2-3 games or game communities, with relevance and visual elements
### Anime & manga: 2-3 IPs, with relevance and visual elements
### Visual aesthetics: 2-3 current aesthetic movements (Y2K, aura, pixel, ...)
    and how they resonate with this audience

## 3. Current icon analysis
- What is the core subject? (e.g. an orange cat, a calculator)
- How does the icon communicate the app's function?
- What is the current visual style? (3D, flat, cartoon, realistic, ...)
- Which elements MUST be preserved so users still recognise the app and understand what it does?

Return ONLY valid JSON with this structure — no markdown fences, no explanation:
{{
  "targetAudience": {{"demographics": "...", "interests": ["..."]}},
  "entertainmentTrends": {{
    "movies": [{{"title": "...", "relevance": "...", "visualElements": ["..."]}}],
    "games": [{{"title": "...", "relevance": "...", "visualElements": ["..."]}}],
    "anime": [{{"title": "...", "relevance": "...", "visualElements": ["..."]}}],
    "aesthetics": [{{"name": "...", "description": "...", "examples": ["..."]}}]
  }},
  "iconAnalysis": {{"coreSubject": "...", "appFunction": "...", "currentStyle": "...", "mustPreserve": ["..."]}}
}}
"""


def build_insights_prompt(app: AppInfo) -> str:
    return INSIGHTS_PROMPT_TEMPLATE.format(
        name=sanitize(app.name, MAX_DESCRIPTION_LENGTH),
        category=sanitize(app.category, MAX_DESCRIPTION_LENGTH),
        description=sanitize(app.description, MAX_DESCRIPTION_LENGTH),
    )


_ICON_ANALYSIS_BLOCK = """\
## Original icon analysis
- Core subject: {core_subject}
- App function: {app_function}
- Current style: {current_style}
- Must preserve: {must_preserve}"""

_FUNCTION_GUARD_REMINDER = """\
## Function guard reminder
Finally, remind the user which elements must be kept during the evolution so that:
1. Users still recognise this as the same app
2. The icon still clearly communicates what the app does

Return the suggestion as JSON."""

TREND_GUIDED_SUGGESTION_TEMPLATE = """\
You are a creative director and app icon design expert.

Based on the entertainment trends the user selected, propose ONE unified
evolution direction for this app icon.

{icon_block}

## Trends selected by the user
{trend_context}

Propose an integrated evolution that fuses the visual elements of all selected
trends into a single coherent design direction.

Requirements:
1. Do not describe each trend's influence separately; merge them into one coherent evolution concept
2. Describe the visual effect concretely (color, lighting, texture, elements)
3. Explain how the direction keeps the icon's core identity while making it feel fresh
4. Give 3-5 key visual elements as design guidance

{guard}"""

GENERIC_UPLIFT_SUGGESTION_TEMPLATE = """\
You are a creative director and app icon design expert.

The user has not selected any specific trend. Propose a general quality
uplift for this icon based on its own characteristics.

{icon_block}

Focus the suggestion on:
1. Raising visual refinement and a modern feel
2. Improving lighting and material rendering
3. Strengthening color depth and contrast
4. Keeping the core identification elements

{guard}"""


def build_suggestion_prompt(icon_analysis: IconAnalysis, filtered: TrendFilterResult) -> str:
    """
    Instruction for the suggestion stage.

    An empty filter result takes the generic quality-uplift template; any
    matched trend takes the trend-guided template. They are separate
    templates, not one template with blanks.
    """
    icon_block = _ICON_ANALYSIS_BLOCK.format(
        core_subject=sanitize(icon_analysis.core_subject, MAX_FIELD_LENGTH),
        app_function=sanitize(icon_analysis.app_function, MAX_FIELD_LENGTH),
        current_style=sanitize(icon_analysis.current_style, MAX_FIELD_LENGTH),
        must_preserve=", ".join(sanitize_list(icon_analysis.must_preserve)),
    )
    if filtered.has_selection:
        return TREND_GUIDED_SUGGESTION_TEMPLATE.format(
            icon_block=icon_block,
            trend_context=filtered.context,
            guard=_FUNCTION_GUARD_REMINDER,
        )
    return GENERIC_UPLIFT_SUGGESTION_TEMPLATE.format(icon_block=icon_block, guard=_FUNCTION_GUARD_REMINDER)


# ── Stage instructions: brief flow ───────────────────────────────────────────

def build_app_analysis_prompt(
    description: str,
    screenshot_count: int,
    play_store_url: Optional[str] = None,
) -> str:
    lines = [
        "Act as a senior ASO & Product Strategist. Analyze this app based on the provided "
        "metadata/link and screenshots.",
        "",
        f"METADATA/LINK: {sanitize(description, MAX_DESCRIPTION_LENGTH)}",
    ]
    if play_store_url:
        lines += [
            "",
            f"GOOGLE PLAY URL DETECTED: {play_store_url}",
            "Extract the app name and category from the Play Store listing.",
        ]
    lines += [
        "",
        "TASKS:",
        "1. Extract App Name and Category (if identifiable from input or screenshots).",
        "2. Identify the Vertical (e.g., Social Utility, Photo Tool, Game).",
        "3. Identify the Core Functional Utility.",
        "4. Identify Demographics (be specific: age range, region, device preference).",
        '5. Audit the screenshots for "Visual DNA" (colors, shapes, primary metaphors).',
        "6. Identify 3 visual competitors in the same category with their color palettes and visual styles.",
        "7. Create a STRUCTURED Psychographic Profile: functional, emotional and social motivation plus a one-sentence summary.",
    ]
    if screenshot_count:
        lines += [
            "",
            f"SCREENSHOT CLASSIFICATION ({screenshot_count} image(s), index starting at 0):",
            "Determine which image is the ORIGINAL APP ICON (square format, centered subject, icon-like composition).",
            "8. SEED ICON ANALYSIS if an original icon is found: primary metaphor, color palette (hex),",
            "   shape language, lighting style, and the elements that MUST be preserved in any evolution.",
        ]
    lines += ["", "Return valid JSON."]
    return "\n".join(lines)


def _psychographic(profile) -> PsychographicProfile:
    if isinstance(profile, str):
        return PsychographicProfile(summary=profile)
    return profile


def build_trends_prompt(analysis: AppAnalysis) -> str:
    profile = _psychographic(analysis.psychographic_profile)
    demographics = sanitize(analysis.demographics, MAX_DESCRIPTION_LENGTH)
    vertical = sanitize(analysis.vertical, MAX_DESCRIPTION_LENGTH)
    emotional_why = sanitize(profile.emotional_motivation, MAX_FIELD_LENGTH) or "Not specified"
    functional_why = sanitize(profile.functional_motivation, MAX_FIELD_LENGTH) or "Not specified"
    features = ", ".join(sanitize_list(analysis.features)) or "Not specified"
    app_name = sanitize(analysis.app_name or "", MAX_FIELD_LENGTH) or "Unknown"

    return "\n".join([
        "Act as a Cultural Media & Market Trend Analyst.",
        "",
        "APP CONTEXT:",
        f"- App: {app_name}",
        f"- Vertical: {vertical}",
        f"- Target Audience: {demographics}",
        f"- User's Emotional Why: {emotional_why}",
        f"- User's Functional Why: {functional_why}",
        f"- Core Features: {features}",
        "",
        "RESEARCH TASKS (last 30 days):",
        f"1. AUDIENCE-SPECIFIC CONTENT: What movies, shows, games, and IPs are trending with {demographics}? Name actual titles.",
        "2. VISUAL TRENDS: What aesthetic movements dominate this audience's visual diet?",
        f'3. VIRAL HOOKS: What visual moments could inspire icon design? How do they connect to "{emotional_why}"?',
        f"4. SUBCULTURE OVERLAP: What communities/fandoms overlap with {vertical} users and what visual language do they share?",
        "",
        "Return ONLY valid JSON — no markdown fences — with structured arrays:",
        '- "entertainmentNarrative": [{"category": "...", "items": [{"title": "...", "description": "..."}]}]',
        '- "subcultureOverlap": [{"community": "...", "visualLanguage": "..."}]',
        '- "visualTrends": [{"trend": "...", "description": "..."}]',
        '- "sentimentKeywords": ["..."]',
        '- "methodologyReasoning": "..."',
        "Do NOT use markdown formatting like asterisks or bullet points in string values.",
    ])


def build_briefs_prompt(analysis: AppAnalysis, trends: TrendSynthesis) -> str:
    seed = analysis.seed_icon_analysis
    if seed and seed.identified:
        seed_block = "\n".join([
            "=== SEED ICON (EVOLVE FROM THIS) ===",
            f"Metaphor: {sanitize(seed.primary_metaphor, MAX_FIELD_LENGTH)}",
            f"Colors: {', '.join(sanitize_list(seed.color_palette))}",
            f"Shape Language: {sanitize(seed.shape_language, MAX_FIELD_LENGTH)}",
            f"Lighting: {sanitize(seed.lighting_style, MAX_FIELD_LENGTH)}",
            f"MUST PRESERVE: {', '.join(sanitize_list(seed.must_preserve))}",
        ])
    else:
        seed_block = "\n".join([
            "=== VISUAL DNA (BASE REFERENCE) ===",
            sanitize(analysis.visual_dna or "No visual DNA available", MAX_DESCRIPTION_LENGTH),
        ])

    competitors = "\n".join(
        f"{i}. {sanitize(c.name, MAX_FIELD_LENGTH)}: colors {', '.join(sanitize_list(c.color_palette))}; "
        f"style {sanitize(c.style, MAX_FIELD_LENGTH)}"
        for i, c in enumerate(analysis.competitors, start=1)
    ) or "None identified"

    profile = _psychographic(analysis.psychographic_profile)

    trend_lines: List[str] = []
    for category in trends.entertainment_narrative:
        titles = ", ".join(sanitize(item.title, MAX_FIELD_LENGTH) for item in category.items)
        trend_lines.append(f"- {sanitize(category.category, MAX_FIELD_LENGTH)}: {titles}")
    for item in trends.visual_trends:
        trend_lines.append(f"- Visual trend {sanitize(item.trend, MAX_FIELD_LENGTH)}: {sanitize(item.description, MAX_FIELD_LENGTH)}")
    for item in trends.subculture_overlap:
        trend_lines.append(
            f"- Community {sanitize(item.community, MAX_FIELD_LENGTH)}: {sanitize(item.visual_language, MAX_FIELD_LENGTH)}"
        )
    if trends.sentiment_keywords:
        trend_lines.append(f"- Sentiment keywords: {', '.join(sanitize_list(trends.sentiment_keywords))}")

    return "\n".join([
        "Act as a Creative Director for app store icon design.",
        "Create 3 distinct creative briefs for evolving this app's icon.",
        "",
        f"APP: {sanitize(analysis.app_name or 'Unknown', MAX_FIELD_LENGTH)} ({sanitize(analysis.vertical, MAX_FIELD_LENGTH)})",
        f"AUDIENCE: {sanitize(analysis.demographics, MAX_DESCRIPTION_LENGTH)}",
        f"PSYCHOGRAPHIC SUMMARY: {sanitize(profile.summary, MAX_DESCRIPTION_LENGTH) or 'Not specified'}",
        "",
        seed_block,
        "",
        "=== COMPETITORS ===",
        competitors,
        "",
        "=== SELECTED TRENDS ===",
        "\n".join(trend_lines) or "No trend categories selected - focus on category best practice.",
        "",
        "For each brief return: id, directionName, theWhy, designThesis, prompt (a detailed image",
        "generation prompt), suggestedSize (1K, 2K or 4K), ctrRationale, cvrRationale,",
        "competitorDifferentiation.",
        'Return JSON as {"briefs": [...]}.',
    ])
