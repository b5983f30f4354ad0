"""
brief_pipeline.py — Brief-based variant of the icon pipeline.

  IDLE → ANALYZING → ANALYSIS_REVIEW → SYNTHESIZING → TRENDS_REVIEW → BRIEFING → BRIEFS_REVIEW

Same StagedPipeline as the evolution flow, different steps. Once briefs
exist, each one can be rendered to an image on its own; those renders share
the single-flight lock but do not move the state machine.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import IconEvolverError, InputValidationError, InvalidTransitionError
from .metadata import detect_play_store_package, play_store_url
from .models import AppAnalysis, CreativeBrief, ImagePayload, TrendSynthesis
from .prompt_builder import (
    build_app_analysis_prompt,
    build_brief_generation_prompt,
    build_briefs_prompt,
    build_trends_prompt,
)
from .staged import PipelineSnapshot, StagedPipeline, StageFlow, StageStep, back_targets, invoke
from .validators import (
    MAX_INPUT_LENGTH,
    MAX_PROMPT_LENGTH,
    MAX_SCREENSHOTS,
    filter_valid_items,
    sanitize,
)

logger = logging.getLogger(__name__)


class BriefState(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    ANALYSIS_REVIEW = "ANALYSIS_REVIEW"
    SYNTHESIZING = "SYNTHESIZING"
    TRENDS_REVIEW = "TRENDS_REVIEW"
    BRIEFING = "BRIEFING"
    BRIEFS_REVIEW = "BRIEFS_REVIEW"


B = BriefState

BRIEF_FLOW = StageFlow(
    initial=B.IDLE,
    states=tuple(B),
    steps=(
        StageStep(
            name="analyze",
            entry=(B.IDLE,),
            pending=B.ANALYZING,
            done=B.ANALYSIS_REVIEW,
            fallback=B.IDLE,
            output="analysis",
        ),
        StageStep(
            name="synthesize",
            entry=(B.ANALYSIS_REVIEW, B.TRENDS_REVIEW),
            pending=B.SYNTHESIZING,
            done=B.TRENDS_REVIEW,
            fallback=B.ANALYSIS_REVIEW,
            output="trends",
            requires=("analysis",),
        ),
        StageStep(
            name="brief",
            entry=(B.TRENDS_REVIEW, B.BRIEFS_REVIEW),
            pending=B.BRIEFING,
            done=B.BRIEFS_REVIEW,
            fallback=B.TRENDS_REVIEW,
            output="briefs",
            requires=("analysis", "trends"),
        ),
    ),
    back_targets=back_targets({
        B.ANALYZING: (B.IDLE,),
        B.ANALYSIS_REVIEW: (B.IDLE,),
        B.SYNTHESIZING: (B.ANALYSIS_REVIEW, B.IDLE),
        B.TRENDS_REVIEW: (B.ANALYSIS_REVIEW, B.IDLE),
        B.BRIEFING: (B.TRENDS_REVIEW, B.ANALYSIS_REVIEW, B.IDLE),
        B.BRIEFS_REVIEW: (B.TRENDS_REVIEW, B.ANALYSIS_REVIEW, B.IDLE),
    }),
)

# trend categories that can be switched off before briefing, in display order
TREND_CATEGORIES = (
    "entertainmentNarrative",
    "sentimentKeywords",
    "subcultureOverlap",
    "visualTrends",
)

_CATEGORY_FIELDS = {
    "entertainmentNarrative": "entertainment_narrative",
    "sentimentKeywords": "sentiment_keywords",
    "subcultureOverlap": "subculture_overlap",
    "visualTrends": "visual_trends",
}

INITIAL_CONTEXT = {
    "description": "",
    "screenshots": (),
    "enabled_categories": frozenset(TREND_CATEGORIES),
    "trend_order": TREND_CATEGORIES,
    "images": MappingProxyType({}),
    "executing_all": False,
}


def filter_trend_categories(trends: TrendSynthesis, enabled: Sequence[str]) -> TrendSynthesis:
    """Empty out every category that is switched off; reasoning and sources always stay."""
    cleared = {field: [] for category, field in _CATEGORY_FIELDS.items() if category not in enabled}
    return trends.model_copy(update=cleared)


def seed_screenshot(analysis: Optional[AppAnalysis], screenshots: Sequence[ImagePayload]) -> Optional[ImagePayload]:
    """The screenshot the analysis identified as the app icon, else the first one."""
    if not screenshots:
        return None
    index = 0
    seed = analysis.seed_icon_analysis if analysis else None
    if seed and seed.identified and seed.screenshot_index is not None:
        index = seed.screenshot_index
    if 0 <= index < len(screenshots):
        return screenshots[index]
    return screenshots[0]


class BriefPipeline:
    """
    One user session of the brief-based flow.

    `service` needs analyze_app(prompt, images), synthesize_trends(prompt),
    create_briefs(prompt) and generate_icon(prompt, seed, size).
    """

    def __init__(self, service: Any) -> None:
        self.service = service
        self._pipeline = StagedPipeline(BRIEF_FLOW, context=INITIAL_CONTEXT)

    @property
    def snapshot(self) -> PipelineSnapshot:
        return self._pipeline.snapshot

    @property
    def state(self) -> BriefState:
        return self._pipeline.state

    @property
    def analysis(self) -> Optional[AppAnalysis]:
        return self.snapshot.output("analysis")

    @property
    def trends(self) -> Optional[TrendSynthesis]:
        return self.snapshot.output("trends")

    @property
    def briefs(self) -> List[CreativeBrief]:
        return list(self.snapshot.output("briefs") or [])

    @property
    def images(self) -> Mapping[str, ImagePayload]:
        return self.snapshot.get("images")

    # ── input ─────────────────────────────────────────────────────────────────

    def set_input(self, description: str) -> PipelineSnapshot:
        return self._pipeline.update_context(description=sanitize(description, MAX_INPUT_LENGTH))

    def add_screenshot(self, payload: ImagePayload) -> PipelineSnapshot:
        screenshots = self.snapshot.get("screenshots")
        if len(screenshots) >= MAX_SCREENSHOTS:
            raise InputValidationError(f"At most {MAX_SCREENSHOTS} screenshots allowed")
        if not filter_valid_items([payload.as_dict()]):
            raise InputValidationError(f"Unsupported screenshot type: {payload.mime_type}")
        return self._pipeline.update_context(screenshots=screenshots + (payload,))

    def remove_screenshot(self, index: int) -> PipelineSnapshot:
        screenshots = self.snapshot.get("screenshots")
        return self._pipeline.update_context(
            screenshots=tuple(s for i, s in enumerate(screenshots) if i != index)
        )

    # ── stages ────────────────────────────────────────────────────────────────

    async def start_analysis(self) -> PipelineSnapshot:
        description = self.snapshot.get("description")
        screenshots = self.snapshot.get("screenshots")
        if not description.strip() and not screenshots:
            raise InputValidationError("Please enter a description or upload screenshots")

        images = [
            ImagePayload(data=item["data"], mime_type=item["mimeType"])
            for item in filter_valid_items([s.as_dict() for s in screenshots])
        ]
        package_id = detect_play_store_package(description)
        prompt = build_app_analysis_prompt(
            description,
            len(images),
            play_store_url(package_id) if package_id else None,
        )

        async def call() -> AppAnalysis:
            return await invoke(self.service.analyze_app, prompt, images)

        return await self._pipeline.run("analyze", call)

    async def start_trends(self) -> PipelineSnapshot:
        async def call() -> TrendSynthesis:
            return await invoke(self.service.synthesize_trends, build_trends_prompt(self.analysis))

        return await self._pipeline.run("synthesize", call)

    def toggle_trend_category(self, category: str) -> PipelineSnapshot:
        if category not in TREND_CATEGORIES:
            raise InputValidationError(f"Unknown trend category: {category}")
        enabled = set(self.snapshot.get("enabled_categories"))
        enabled.symmetric_difference_update({category})
        return self._pipeline.update_context(enabled_categories=frozenset(enabled))

    def reorder_trends(self, order: Sequence[str]) -> PipelineSnapshot:
        if sorted(order) != sorted(TREND_CATEGORIES):
            raise InputValidationError(f"Trend order must list each of {', '.join(TREND_CATEGORIES)} once")
        return self._pipeline.update_context(trend_order=tuple(order))

    async def start_briefing(self) -> PipelineSnapshot:
        async def call() -> Tuple[CreativeBrief, ...]:
            trends = filter_trend_categories(self.trends, self.snapshot.get("enabled_categories"))
            return tuple(await invoke(self.service.create_briefs, build_briefs_prompt(self.analysis, trends)))

        def on_success(briefs: Tuple[CreativeBrief, ...]) -> dict:
            return {"images": MappingProxyType({})}

        return await self._pipeline.run("brief", call, on_success)

    # ── per-brief images ──────────────────────────────────────────────────────

    def _brief(self, brief_id: str) -> CreativeBrief:
        if self.snapshot.output("briefs") is None:
            raise InvalidTransitionError("No briefs generated yet")
        for brief in self.briefs:
            if brief.id == brief_id:
                return brief
        raise InputValidationError(f"Unknown brief: {brief_id}")

    async def generate_image(self, brief_id: str) -> Optional[ImagePayload]:
        """
        Render one brief. On failure any earlier image for the brief is kept
        and the error is re-raised. Returns None when the call was ignored.
        """
        if self.state != BriefState.BRIEFS_REVIEW:
            raise InvalidTransitionError(f"Images can only be generated from {BriefState.BRIEFS_REVIEW.value}")
        brief = self._brief(brief_id)
        seed = seed_screenshot(self.analysis, self.snapshot.get("screenshots"))
        prompt = build_brief_generation_prompt(brief.prompt, seed is not None)

        async def call() -> ImagePayload:
            return await invoke(self.service.generate_icon, prompt, seed, brief.suggested_size)

        accepted, image = await self._pipeline.run_task(f"render {brief_id}", call)
        if not accepted:
            return None
        images: Dict[str, ImagePayload] = dict(self.images)
        images[brief_id] = image
        self._pipeline.update_context(images=MappingProxyType(images))
        logger.info(f"Rendered brief {brief_id}")
        return image

    def update_brief_prompt(self, brief_id: str, prompt: str) -> PipelineSnapshot:
        target = self._brief(brief_id)
        edited = target.model_copy(update={"prompt": sanitize(prompt, MAX_PROMPT_LENGTH)})
        briefs = tuple(edited if b.id == brief_id else b for b in self.briefs)
        return self._pipeline.replace_output("briefs", briefs)

    async def regenerate_image(self, brief_id: str, prompt: str) -> Optional[ImagePayload]:
        """Edit the prompt, then render again; the previous image survives a failure."""
        self.update_brief_prompt(brief_id, prompt)
        return await self.generate_image(brief_id)

    async def execute_all(self) -> Dict[str, IconEvolverError]:
        """
        Render every brief without an image, one at a time.

        A failed brief does not stop the run; failures are returned by brief id.
        """
        if self.snapshot.get("executing_all"):
            logger.warning("Ignoring execute_all: already running")
            return {}

        failures: Dict[str, IconEvolverError] = {}
        briefs = self.snapshot.output("briefs")
        self._pipeline.update_context(executing_all=True)
        try:
            for brief in briefs or ():
                if self.state != BriefState.BRIEFS_REVIEW:
                    logger.warning(f"Left {BriefState.BRIEFS_REVIEW.value}; stopping execute_all")
                    break
                if brief.id in self.images:
                    continue
                try:
                    await self.generate_image(brief.id)
                except IconEvolverError as e:
                    logger.warning(f"Brief {brief.id} failed: {e}")
                    failures[brief.id] = e
        finally:
            self._pipeline.update_context(executing_all=False)
        return failures

    # ── navigation ────────────────────────────────────────────────────────────

    def go_to_step(self, target: Union[BriefState, str]) -> PipelineSnapshot:
        try:
            target = BriefState(target)
        except ValueError:
            raise InvalidTransitionError(f"Unknown step: {target}") from None
        return self._pipeline.go_to(target)

    def reset(self) -> PipelineSnapshot:
        return self._pipeline.reset()
