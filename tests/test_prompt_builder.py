from icon_evolver.models import AppAnalysis, AppInfo, DimensionValue, IconAnalysis, SelectedDimensions, TrendSynthesis
from icon_evolver.prompt_builder import (
    DEFAULT_FUNCTION,
    DEFAULT_PRESERVE,
    DEFAULT_SUBJECT,
    NO_DIMENSION_FALLBACK,
    build_app_analysis_prompt,
    build_brief_generation_prompt,
    build_briefs_prompt,
    build_evolution_prompt,
    build_insights_prompt,
    build_suggestion_prompt,
    build_trends_prompt,
    build_unified_prompt,
    preserve_clause,
)
from icon_evolver.rendering_styles import RENDERING_STYLES, SEED_STYLE_PLACEHOLDER
from icon_evolver.trends import filter_trends

from conftest import ANALYSIS_DATA, TRENDS_DATA, png_payload

ICON = IconAnalysis(
    core_subject="an orange cat",
    app_function="camera lens",
    current_style="flat cartoon",
    must_preserve=["orange cat", "camera lens"],
)


def test_dimension_lines_only_for_enabled_non_empty():
    dims = SelectedDimensions(
        style=DimensionValue(enabled=True, value="cyberpunk"),
        pose=DimensionValue(enabled=False, value="jumping"),
        costume=DimensionValue(enabled=False, value=""),
        mood=DimensionValue(enabled=True, value="neon haze"),
    )
    prompt = build_evolution_prompt(dims, ICON)
    assert "Style evolution: cyberpunk" in prompt
    assert "Background/mood evolution: neon haze" in prompt
    assert "Pose evolution" not in prompt
    assert "Costume/prop evolution" not in prompt
    assert prompt.index("Style evolution") < prompt.index("Background/mood evolution")


def test_enabled_but_blank_dimension_falls_back():
    dims = SelectedDimensions(style=DimensionValue(enabled=True, value="   "))
    prompt = build_evolution_prompt(dims, ICON)
    assert NO_DIMENSION_FALLBACK in prompt
    assert "Style evolution" not in prompt


def test_missing_analysis_uses_placeholders():
    prompt = build_unified_prompt("make it shiny")
    assert f"Core subject: {DEFAULT_SUBJECT}" in prompt
    assert f"App function: {DEFAULT_FUNCTION}" in prompt
    assert f"Must preserve: {DEFAULT_PRESERVE}" in prompt


def test_match_seed_without_current_style_uses_placeholder():
    icon = ICON.model_copy(update={"current_style": ""})
    prompt = build_unified_prompt("make it shiny", icon, rendering_style="match_seed")
    assert f"Keep the original visual style: {SEED_STYLE_PLACEHOLDER}" in prompt


def test_match_seed_interpolates_current_style():
    prompt = build_unified_prompt("make it shiny", ICON, rendering_style="match_seed")
    assert "Keep the original visual style: flat cartoon" in prompt


def test_unknown_style_falls_back_to_3d_render():
    prompt = build_unified_prompt("x", ICON, rendering_style="watercolor")
    assert RENDERING_STYLES["3d_render"].prompt_fragment in prompt


def test_function_guard_replaces_must_preserve():
    assert preserve_clause(ICON, ["lens only"]) == "lens only"
    prompt = build_unified_prompt("x", ICON, function_guard=["lens only"])
    assert "Must preserve: lens only\n" in prompt
    assert "orange cat, camera lens" not in prompt
    assert preserve_clause(ICON, []) == "orange cat, camera lens"


def test_prompt_is_pure():
    args = ("a samurai cat", ICON, ["lens"], "add sparkles", "glassmorphism")
    assert build_unified_prompt(*args) == build_unified_prompt(*args)
    dims = SelectedDimensions(mood=DimensionValue(enabled=True, value="rain"))
    assert build_evolution_prompt(dims, ICON) == build_evolution_prompt(dims, ICON)


def test_direction_inserted_verbatim_and_additional_prompt():
    prompt = build_unified_prompt("Neon samurai cat, rim light", ICON, additional_prompt="no text")
    assert "Evolution direction:\nNeon samurai cat, rim light\n" in prompt
    assert "\nAdditional instructions: no text\n" in prompt
    assert "Additional instructions" not in build_unified_prompt("x", ICON)


def test_suggestion_prompt_branches_on_selection(corpus):
    generic = build_suggestion_prompt(ICON, filter_trends(corpus, []))
    guided = build_suggestion_prompt(ICON, filter_trends(corpus, ["anime-Demon Slayer"]))
    assert "has not selected any specific trend" in generic
    assert "Trends selected by the user" not in generic
    assert "Trends selected by the user" in guided
    assert "Demon Slayer" in guided


def test_insights_prompt_sanitizes_app_info():
    app = AppInfo(name="<Cat> Cam", category="Photo", description="Cute <script>", icon=png_payload())
    prompt = build_insights_prompt(app)
    assert "- Name: Cat Cam" in prompt
    assert "<script>" not in prompt


def test_brief_generation_prompt_seeded_and_fresh():
    assert build_brief_generation_prompt("a fox", True).startswith("EVOLUTION MODE")
    fresh = build_brief_generation_prompt("a fox", False)
    assert fresh.startswith("Generate a premium mobile app icon")
    assert "SUBJECT: a fox" in fresh


def test_brief_flow_prompts():
    analysis = AppAnalysis.model_validate(ANALYSIS_DATA)
    trends = TrendSynthesis.model_validate(TRENDS_DATA)
    assert "SCREENSHOT CLASSIFICATION (2 image(s)" in build_app_analysis_prompt("Cat Cam", 2)
    assert "GOOGLE PLAY URL DETECTED" in build_app_analysis_prompt("x", 0, "https://play.google.com/x")
    assert "Wants cute selfies" not in build_trends_prompt(analysis)  # string profile has no emotional motivation
    briefs_prompt = build_briefs_prompt(analysis, trends)
    assert "=== SEED ICON (EVOLVE FROM THIS) ===" in briefs_prompt
    assert "PSYCHOGRAPHIC SUMMARY: Wants cute selfies" in briefs_prompt
    assert "1. Snapcat" in briefs_prompt
    empty = trends.model_copy(update={
        "entertainment_narrative": [], "visual_trends": [], "subculture_overlap": [], "sentiment_keywords": [],
    })
    assert "No trend categories selected" in build_briefs_prompt(analysis, empty)
