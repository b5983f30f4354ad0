"""
pipeline.py — Icon evolution pipeline.

  IDLE → ANALYZING → INSIGHTS_REVIEW → SUGGESTING → CUSTOMIZING → GENERATING → COMPLETE

Stage calls (each one external request):
  1. analyze   — audience, entertainment trends and seed icon analysis
  2. suggest   — one evolution direction + function guard, trend-guided or generic
  3. generate  — the evolved icon image

Everything between the calls (trend selection, suggestion edits, rendering
style, extra prompt, preserve-list override, size) is plain context on the
snapshot and never touches the network.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .errors import InputValidationError, InvalidTransitionError
from .metadata import PlayStoreLookup, detect_play_store_package
from .models import (
    AppInfo,
    EntertainmentInsights,
    EvolutionSuggestions,
    GeneratedIcon,
    ImagePayload,
    UnifiedSuggestion,
)
from .prompt_builder import build_insights_prompt, build_suggestion_prompt, build_unified_prompt
from .rendering_styles import MATCH_SEED, is_known_style
from .staged import PipelineSnapshot, StagedPipeline, StageFlow, StageStep, back_targets, invoke
from .trends import all_trend_ids, filter_trends, find_ambiguous_ids
from .validators import (
    ICON_SIZES,
    MAX_DESCRIPTION_LENGTH,
    MAX_FIELD_LENGTH,
    MAX_IMAGE_SIZE_BYTES,
    MAX_PROMPT_LENGTH,
    estimate_base64_size,
    sanitize,
    sanitize_list,
    validate_image_payload,
    validate_size,
)

logger = logging.getLogger(__name__)


class EvolutionState(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    INSIGHTS_REVIEW = "INSIGHTS_REVIEW"
    SUGGESTING = "SUGGESTING"
    CUSTOMIZING = "CUSTOMIZING"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"


S = EvolutionState

EVOLUTION_FLOW = StageFlow(
    initial=S.IDLE,
    states=tuple(S),
    steps=(
        StageStep(
            name="analyze",
            entry=(S.IDLE,),
            pending=S.ANALYZING,
            done=S.INSIGHTS_REVIEW,
            fallback=S.IDLE,
            output="insights",
        ),
        StageStep(
            name="suggest",
            entry=(S.INSIGHTS_REVIEW, S.CUSTOMIZING),
            pending=S.SUGGESTING,
            done=S.CUSTOMIZING,
            fallback=S.INSIGHTS_REVIEW,
            output="suggestions",
            requires=("insights",),
        ),
        StageStep(
            name="generate",
            entry=(S.CUSTOMIZING, S.COMPLETE),
            pending=S.GENERATING,
            done=S.COMPLETE,
            fallback=S.CUSTOMIZING,
            output="generated",
            requires=("insights", "suggestions"),
        ),
    ),
    back_targets=back_targets({
        S.ANALYZING: (S.IDLE,),
        S.INSIGHTS_REVIEW: (S.IDLE,),
        S.SUGGESTING: (S.INSIGHTS_REVIEW, S.IDLE),
        S.CUSTOMIZING: (S.INSIGHTS_REVIEW, S.IDLE),
        S.GENERATING: (S.CUSTOMIZING, S.INSIGHTS_REVIEW, S.IDLE),
        S.COMPLETE: (S.CUSTOMIZING, S.INSIGHTS_REVIEW, S.IDLE),
    }),
)

DEFAULT_SIZE = "1K"

INITIAL_CONTEXT = {
    "app_info": None,
    "trend_selection": frozenset(),
    "edited_suggestion": None,
    "rendering_style": MATCH_SEED,
    "additional_prompt": "",
    "function_guard": None,
    "size": DEFAULT_SIZE,
    "history": (),
}


def _as_payload(icon: Union[ImagePayload, Mapping[str, Any]]) -> ImagePayload:
    raw = icon.as_dict() if isinstance(icon, ImagePayload) else icon
    if not validate_image_payload(raw):
        raise InputValidationError("Icon must be base64 image data (png, jpeg, webp or gif)")
    if estimate_base64_size(raw["data"]) > MAX_IMAGE_SIZE_BYTES:
        raise InputValidationError(
            f"Icon too large. Maximum {MAX_IMAGE_SIZE_BYTES // (1024 * 1024)}MB allowed."
        )
    return ImagePayload(data=raw["data"], mime_type=raw["mimeType"])


class EvolutionPipeline:
    """
    One user session of the icon evolution flow.

    `service` needs analyze_entertainment(prompt, icon), suggest_evolution(prompt)
    and generate_icon(prompt, seed, size); sync or async methods both work.
    `lookup` resolves Play Store packages and is only used for URL input.
    """

    def __init__(self, service: Any, lookup: Optional[PlayStoreLookup] = None) -> None:
        self.service = service
        self.lookup = lookup
        self._pipeline = StagedPipeline(EVOLUTION_FLOW, context=INITIAL_CONTEXT)

    # ── read-only views ───────────────────────────────────────────────────────

    @property
    def snapshot(self) -> PipelineSnapshot:
        return self._pipeline.snapshot

    @property
    def state(self) -> EvolutionState:
        return self._pipeline.state

    @property
    def busy(self) -> bool:
        return self._pipeline.busy

    @property
    def insights(self) -> Optional[EntertainmentInsights]:
        return self.snapshot.output("insights")

    @property
    def suggestions(self) -> Optional[EvolutionSuggestions]:
        return self.snapshot.output("suggestions")

    def _require_insights(self) -> EntertainmentInsights:
        if self.insights is None:
            raise InvalidTransitionError("Run the analysis first")
        return self.insights

    # ── stage 1: analysis ─────────────────────────────────────────────────────

    async def start_analysis(
        self,
        icon: Union[ImagePayload, Mapping[str, Any], None] = None,
        name: str = "",
        category: str = "",
        description: str = "",
        play_store_url: Optional[str] = None,
    ) -> PipelineSnapshot:
        """
        Analyse audience, trends and the seed icon.

        Either a Play Store URL (metadata lookup supplies icon, name, category
        and description) or a manual icon plus all three text fields.
        """
        if play_store_url:
            package_id = detect_play_store_package(play_store_url)
            if package_id is None:
                raise InputValidationError(f"Not a Google Play app URL: {play_store_url}")
            lookup = self.lookup or PlayStoreLookup()

            async def resolve_app() -> AppInfo:
                meta = await invoke(lookup.lookup, package_id)
                return AppInfo(
                    name=meta.name,
                    category=meta.category,
                    description=meta.description or meta.name,
                    icon=meta.icon,
                )
        else:
            if icon is None:
                raise InputValidationError("An icon image or a Play Store URL is required")
            manual = AppInfo(
                name=sanitize(name, MAX_FIELD_LENGTH),
                category=sanitize(category, MAX_FIELD_LENGTH),
                description=sanitize(description, MAX_DESCRIPTION_LENGTH),
                icon=_as_payload(icon),
            )
            missing = [f for f in ("name", "category", "description") if not getattr(manual, f)]
            if missing:
                raise InputValidationError(f"Missing required field(s): {', '.join(missing)}")

            async def resolve_app() -> AppInfo:
                return manual

        resolved = {}

        async def call() -> EntertainmentInsights:
            app = await resolve_app()
            resolved["app"] = app
            return await invoke(self.service.analyze_entertainment, build_insights_prompt(app), app.icon)

        def on_success(insights: EntertainmentInsights) -> dict:
            ambiguous = find_ambiguous_ids(insights.entertainment_trends)
            if ambiguous:
                logger.warning(f"{len(ambiguous)} trend id(s) match more than one entry")
            return {
                "app_info": resolved["app"],
                "trend_selection": frozenset(),
                "edited_suggestion": None,
                "function_guard": None,
            }

        return await self._pipeline.run("analyze", call, on_success)

    # ── trend selection ───────────────────────────────────────────────────────

    def set_trend_selection(self, trend_ids: Iterable[str]) -> PipelineSnapshot:
        selection = frozenset(t for t in trend_ids if isinstance(t, str) and t.strip())
        return self._pipeline.update_context(trend_selection=selection)

    def toggle_trend(self, trend_id: str) -> PipelineSnapshot:
        selection = set(self.snapshot.get("trend_selection"))
        if trend_id in selection:
            selection.discard(trend_id)
        else:
            selection.add(trend_id)
        return self.set_trend_selection(selection)

    def select_all_trends(self) -> PipelineSnapshot:
        insights = self._require_insights()
        return self.set_trend_selection(all_trend_ids(insights.entertainment_trends))

    def clear_trend_selection(self) -> PipelineSnapshot:
        return self.set_trend_selection(())

    # ── stage 2: suggestion ───────────────────────────────────────────────────

    async def start_suggestion(self) -> PipelineSnapshot:
        async def call() -> EvolutionSuggestions:
            insights = self.insights
            filtered = filter_trends(insights.entertainment_trends, self.snapshot.get("trend_selection"))
            prompt = build_suggestion_prompt(insights.icon_analysis, filtered)
            result = await invoke(self.service.suggest_evolution, prompt)
            return result.model_copy(update={"selected_trend_names": filtered.selected_names})

        def on_success(result: EvolutionSuggestions) -> dict:
            return {
                "edited_suggestion": result.suggestion,
                "function_guard": result.function_guard.preserve or None,
            }

        return await self._pipeline.run("suggest", call, on_success)

    def update_suggestion(
        self,
        evolution_direction: Optional[str] = None,
        key_elements: Optional[Sequence[str]] = None,
    ) -> PipelineSnapshot:
        if self.suggestions is None:
            raise InvalidTransitionError("No suggestion to edit yet")
        current: UnifiedSuggestion = self.snapshot.get("edited_suggestion") or self.suggestions.suggestion
        update = {}
        if evolution_direction is not None:
            update["evolution_direction"] = sanitize(evolution_direction, MAX_PROMPT_LENGTH)
        if key_elements is not None:
            update["key_elements"] = sanitize_list(key_elements)
        return self._pipeline.update_context(edited_suggestion=current.model_copy(update=update))

    def reset_suggestion(self) -> PipelineSnapshot:
        if self.suggestions is None:
            raise InvalidTransitionError("No suggestion to reset to")
        return self._pipeline.update_context(edited_suggestion=self.suggestions.suggestion)

    # ── customisation ─────────────────────────────────────────────────────────

    def set_rendering_style(self, style_id: str) -> PipelineSnapshot:
        if not is_known_style(style_id):
            raise InputValidationError(f"Unknown rendering style: {style_id}")
        return self._pipeline.update_context(rendering_style=style_id)

    def set_additional_prompt(self, text: str) -> PipelineSnapshot:
        return self._pipeline.update_context(additional_prompt=sanitize(text, MAX_PROMPT_LENGTH))

    def set_function_guard(self, preserve: Optional[Sequence[str]]) -> PipelineSnapshot:
        """Explicit preserve list; None or empty falls back to the icon analysis."""
        items = sanitize_list(preserve) if preserve else []
        return self._pipeline.update_context(function_guard=tuple(items) or None)

    def set_size(self, size: str) -> PipelineSnapshot:
        if not validate_size(size):
            raise InputValidationError(f"Size must be one of {', '.join(ICON_SIZES)}")
        return self._pipeline.update_context(size=size)

    def preview_prompt(self) -> str:
        """Exactly the instruction generate() sends for the current snapshot."""
        snap = self.snapshot
        edited: Optional[UnifiedSuggestion] = snap.get("edited_suggestion")
        insights = snap.output("insights")
        return build_unified_prompt(
            edited.evolution_direction if edited else "",
            icon_analysis=insights.icon_analysis if insights else None,
            function_guard=snap.get("function_guard"),
            additional_prompt=snap.get("additional_prompt") or None,
            rendering_style=snap.get("rendering_style"),
        )

    # ── stage 3: generation ───────────────────────────────────────────────────

    async def generate(self) -> PipelineSnapshot:
        snap = self.snapshot
        edited: Optional[UnifiedSuggestion] = snap.get("edited_suggestion")
        if snap.output("suggestions") is not None and not (edited and edited.evolution_direction.strip()):
            raise InputValidationError("An evolution direction is required before generating", stage="generate")

        prompt = self.preview_prompt()
        app_info: Optional[AppInfo] = snap.get("app_info")
        seed = app_info.icon if app_info else None
        style = snap.get("rendering_style")
        size = snap.get("size")

        async def call() -> GeneratedIcon:
            image = await invoke(self.service.generate_icon, prompt, seed, size)
            return GeneratedIcon(image=image, prompt=prompt, rendering_style=style, size=size)

        def on_success(icon: GeneratedIcon) -> dict:
            return {"history": self.snapshot.get("history") + (icon,)}

        return await self._pipeline.run("generate", call, on_success)

    # ── navigation ────────────────────────────────────────────────────────────

    def go_to_step(self, target: Union[EvolutionState, str]) -> PipelineSnapshot:
        try:
            target = EvolutionState(target)
        except ValueError:
            raise InvalidTransitionError(f"Unknown step: {target}") from None
        return self._pipeline.go_to(target)

    def reset(self) -> PipelineSnapshot:
        return self._pipeline.reset()
