"""
models.py — Typed entities for the icon evolution pipeline.

Service responses arrive as camelCase JSON; every model accepts both the
camelCase alias and the snake_case field name. Models are frozen: edits go
through model_copy(update=...) so snapshots handed to callers never change
underneath them.

Optional sub-fields that a valid response leaves out are filled with fixed
placeholder text rather than treated as failures.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ── Images ────────────────────────────────────────────────────────────────────

class ImagePayload(_Frozen):
    """Base64 image plus its mime type, as exchanged with the generative service."""
    data: str
    mime_type: str = "image/png"

    def as_dict(self) -> Dict[str, str]:
        return {"data": self.data, "mimeType": self.mime_type}


# ── Icon evolution flow ───────────────────────────────────────────────────────

class IconAnalysis(_Frozen):
    core_subject: str = Field(description="What the icon depicts, e.g. 'an orange cat mascot'")
    app_function: str = Field(description="How the icon signals what the app does")
    current_style: str = Field(description="Current rendering style: 3D, flat, cartoon, ...")
    must_preserve: List[str] = Field(
        default_factory=list,
        description="Elements that keep the app recognisable after evolution",
    )


class TrendItem(_Frozen):
    title: str
    relevance: str = "No relevance notes provided"
    visual_elements: List[str] = Field(default_factory=list)


class AestheticItem(_Frozen):
    name: str
    description: str = "No description provided"
    examples: List[str] = Field(default_factory=list)


class TrendCorpus(_Frozen):
    movies: List[TrendItem] = Field(default_factory=list)
    games: List[TrendItem] = Field(default_factory=list)
    anime: List[TrendItem] = Field(default_factory=list)
    aesthetics: List[AestheticItem] = Field(default_factory=list)


class TargetAudience(_Frozen):
    demographics: str = "Unspecified audience"
    interests: List[str] = Field(default_factory=list)


class GroundingSource(_Frozen):
    title: str = "Source"
    uri: str = ""


class EntertainmentInsights(_Frozen):
    """Output of the analysis stage: audience, trend corpus and seed icon analysis."""
    target_audience: TargetAudience
    entertainment_trends: TrendCorpus
    icon_analysis: IconAnalysis
    sources: List[GroundingSource] = Field(default_factory=list)


class UnifiedSuggestion(_Frozen):
    evolution_direction: str
    rationale: str = "No rationale provided"
    key_elements: List[str] = Field(default_factory=list)


class FunctionGuard(_Frozen):
    warning: str
    reason: str
    # explicit override of IconAnalysis.must_preserve when set
    preserve: Optional[List[str]] = None


class EvolutionSuggestions(_Frozen):
    suggestion: UnifiedSuggestion
    function_guard: FunctionGuard
    selected_trend_names: List[str] = Field(default_factory=list)


class DimensionValue(_Frozen):
    enabled: bool = False
    value: str = ""

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.value.strip())


class SelectedDimensions(_Frozen):
    """Legacy four-dimension customisation (style / pose / costume / mood)."""
    style: DimensionValue = Field(default_factory=DimensionValue)
    pose: DimensionValue = Field(default_factory=DimensionValue)
    costume: DimensionValue = Field(default_factory=DimensionValue)
    mood: DimensionValue = Field(default_factory=DimensionValue)


class AppInfo(_Frozen):
    """Sanitised app description sent alongside the seed icon."""
    name: str
    category: str
    description: str
    icon: ImagePayload


class AppMetadata(_Frozen):
    """Result of an app-store metadata lookup."""
    package_id: str
    name: str
    description: str
    category: str = "Other"
    icon: ImagePayload


class GeneratedIcon(_Frozen):
    image: ImagePayload
    prompt: str
    rendering_style: str
    size: str = "1K"


# ── Brief-based flow ──────────────────────────────────────────────────────────

class Competitor(_Frozen):
    name: str
    color_palette: List[str] = Field(default_factory=list)
    style: str = "Unspecified style"


class PsychographicProfile(_Frozen):
    functional_motivation: str = ""
    emotional_motivation: str = ""
    social_motivation: str = ""
    summary: str = ""


class SeedIconAnalysis(_Frozen):
    identified: bool = False
    screenshot_index: Optional[int] = None
    primary_metaphor: str = ""
    color_palette: List[str] = Field(default_factory=list)
    shape_language: str = ""
    lighting_style: str = ""
    must_preserve: List[str] = Field(default_factory=list)


class AppAnalysis(_Frozen):
    app_name: Optional[str] = None
    app_category: Optional[str] = None
    vertical: str
    demographics: str
    features: List[str] = Field(default_factory=list)
    competitors: List[Competitor] = Field(default_factory=list)
    psychographic_profile: Union[PsychographicProfile, str]
    visual_dna: Optional[str] = None
    seed_icon_analysis: Optional[SeedIconAnalysis] = None
    sources: List[GroundingSource] = Field(default_factory=list)


class SubcultureItem(_Frozen):
    community: str
    visual_language: str = ""


class VisualTrendItem(_Frozen):
    trend: str
    description: str = ""


class NarrativeItem(_Frozen):
    title: str
    description: str = ""


class NarrativeCategory(_Frozen):
    category: str
    items: List[NarrativeItem] = Field(default_factory=list)


class TrendSynthesis(_Frozen):
    subculture_overlap: List[SubcultureItem] = Field(default_factory=list)
    visual_trends: List[VisualTrendItem] = Field(default_factory=list)
    sentiment_keywords: List[str] = Field(default_factory=list)
    entertainment_narrative: List[NarrativeCategory] = Field(default_factory=list)
    methodology_reasoning: Optional[str] = None
    sources: List[GroundingSource] = Field(default_factory=list)


class CreativeBrief(_Frozen):
    id: str
    direction_name: str
    the_why: str
    design_thesis: Optional[str] = None
    prompt: str
    suggested_size: Literal["1K", "2K", "4K"] = "1K"
    ctr_rationale: str = ""
    cvr_rationale: str = ""
    competitor_differentiation: str = ""
