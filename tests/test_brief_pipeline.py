import asyncio

import pytest

from icon_evolver.brief_pipeline import (
    TREND_CATEGORIES,
    BriefPipeline,
    BriefState,
    filter_trend_categories,
    seed_screenshot,
)
from icon_evolver.errors import ExternalServiceError, InputValidationError, InvalidTransitionError
from icon_evolver.models import AppAnalysis, ImagePayload, TrendSynthesis

from conftest import ANALYSIS_DATA, TRENDS_DATA, png_payload


def at_briefs_review(service, screenshots=2):
    p = BriefPipeline(service)
    p.set_input("Cat Cam - cute selfie camera")
    for i in range(screenshots):
        p.add_screenshot(png_payload((i * 40, 0, 0)))
    asyncio.run(p.start_analysis())
    asyncio.run(p.start_trends())
    asyncio.run(p.start_briefing())
    return p


def test_full_flow_reaches_briefs_review(brief_service):
    p = at_briefs_review(brief_service)
    assert p.state == BriefState.BRIEFS_REVIEW
    assert [b.id for b in p.briefs] == ["b1", "b2", "b3"]
    assert len(brief_service.calls[0][2]) == 2


def test_analysis_needs_description_or_screenshots(brief_service):
    p = BriefPipeline(brief_service)
    with pytest.raises(InputValidationError):
        asyncio.run(p.start_analysis())
    assert brief_service.calls == []


def test_screenshot_limits(brief_service):
    p = BriefPipeline(brief_service)
    with pytest.raises(InputValidationError):
        p.add_screenshot(ImagePayload(data="abc", mime_type="image/bmp"))
    for _ in range(10):
        p.add_screenshot(png_payload())
    with pytest.raises(InputValidationError):
        p.add_screenshot(png_payload())
    p.remove_screenshot(0)
    assert len(p.snapshot.get("screenshots")) == 9


def test_play_store_url_in_description_is_detected(brief_service):
    p = BriefPipeline(brief_service)
    p.set_input("https://play.google.com/store/apps/details?id=com.cat.cam")
    asyncio.run(p.start_analysis())
    assert "GOOGLE PLAY URL DETECTED: https://play.google.com/store/apps/details?id=com.cat.cam" in brief_service.calls[0][1]


@pytest.mark.parametrize(
    "step, fallback",
    [("synthesize", BriefState.ANALYSIS_REVIEW), ("briefs", BriefState.TRENDS_REVIEW)],
)
def test_failures_roll_back_one_step(brief_service, step, fallback):
    p = BriefPipeline(brief_service)
    p.set_input("Cat Cam")
    asyncio.run(p.start_analysis())
    if step == "briefs":
        asyncio.run(p.start_trends())
    brief_service.fail[step] = ExternalServiceError("down")
    with pytest.raises(ExternalServiceError):
        if step == "synthesize":
            asyncio.run(p.start_trends())
        else:
            asyncio.run(p.start_briefing())
    assert p.state == fallback
    assert p.analysis is not None


def test_disabled_categories_are_left_out(brief_service):
    p = BriefPipeline(brief_service)
    p.set_input("Cat Cam")
    asyncio.run(p.start_analysis())
    asyncio.run(p.start_trends())
    p.toggle_trend_category("subcultureOverlap")
    asyncio.run(p.start_briefing())
    prompt = brief_service.calls[-1][1]
    assert "Community Cosplay" not in prompt
    assert "Visual trend Aura gradients" in prompt
    with pytest.raises(InputValidationError):
        p.toggle_trend_category("memes")


def test_filter_trend_categories_keeps_sources():
    trends = TrendSynthesis.model_validate({**TRENDS_DATA, "sources": [{"title": "t", "uri": "u"}]})
    out = filter_trend_categories(trends, ["visualTrends"])
    assert out.entertainment_narrative == []
    assert out.sentiment_keywords == []
    assert out.visual_trends == trends.visual_trends
    assert out.sources == trends.sources


def test_reorder_trends(brief_service):
    p = BriefPipeline(brief_service)
    order = list(reversed(TREND_CATEGORIES))
    assert p.reorder_trends(order).get("trend_order") == tuple(order)
    with pytest.raises(InputValidationError):
        p.reorder_trends(order[:3])


def test_seed_screenshot_selection():
    shots = [png_payload((1, 0, 0)), png_payload((2, 0, 0))]
    analysis = AppAnalysis.model_validate(ANALYSIS_DATA)
    assert seed_screenshot(analysis, shots) is shots[1]
    far = analysis.model_copy(update={"seed_icon_analysis": analysis.seed_icon_analysis.model_copy(update={"screenshot_index": 9})})
    assert seed_screenshot(far, shots) is shots[0]
    assert seed_screenshot(None, shots) is shots[0]
    assert seed_screenshot(analysis, []) is None


def test_generate_image_uses_identified_seed(brief_service):
    p = at_briefs_review(brief_service)
    image = asyncio.run(p.generate_image("b2"))
    _, prompt, seed, size = brief_service.calls[-1]
    assert prompt.startswith("EVOLUTION MODE")
    assert "prompt 2" in prompt
    assert seed == p.snapshot.get("screenshots")[1]
    assert p.images["b2"] == image
    assert p.state == BriefState.BRIEFS_REVIEW


def test_generate_image_without_screenshots_is_fresh(brief_service):
    p = at_briefs_review(brief_service, screenshots=0)
    asyncio.run(p.generate_image("b1"))
    _, prompt, seed, _ = brief_service.calls[-1]
    assert seed is None
    assert prompt.startswith("Generate a premium mobile app icon")


def test_generate_image_errors(brief_service):
    p = BriefPipeline(brief_service)
    with pytest.raises(InvalidTransitionError):
        asyncio.run(p.generate_image("b1"))
    p = at_briefs_review(brief_service)
    with pytest.raises(InputValidationError):
        asyncio.run(p.generate_image("missing"))


def test_stored_briefs_cannot_be_mutated(brief_service):
    p = at_briefs_review(brief_service)
    assert isinstance(p.snapshot.output("briefs"), tuple)
    p.briefs.append(p.briefs[0])
    assert len(p.snapshot.output("briefs")) == 3

    p.update_brief_prompt("b2", "sharper lens")
    stored = p.snapshot.output("briefs")
    assert isinstance(stored, tuple)
    assert [b.id for b in stored] == ["b1", "b2", "b3"]
    assert stored[1].prompt == "sharper lens"
    with pytest.raises(AttributeError):
        stored.append(stored[0])


def test_regenerate_keeps_previous_image_on_failure(brief_service):
    p = at_briefs_review(brief_service)
    first = asyncio.run(p.generate_image("b1"))
    brief_service.fail["generate"] = ExternalServiceError("render failed")
    with pytest.raises(ExternalServiceError):
        asyncio.run(p.regenerate_image("b1", "a <bold> new prompt"))
    assert p.images["b1"] == first
    assert p.briefs[0].prompt == "a bold new prompt"
    assert not p.snapshot.busy


def test_execute_all_is_sequential_and_skips_rendered(brief_service):
    p = at_briefs_review(brief_service)
    asyncio.run(p.generate_image("b1"))
    in_flight = []
    peak = []
    original = brief_service.generate_icon

    async def tracking(prompt, seed=None, size="1K"):
        in_flight.append(prompt)
        peak.append(len(in_flight))
        try:
            await asyncio.sleep(0)
            return await original(prompt, seed, size)
        finally:
            in_flight.pop()

    brief_service.generate_icon = tracking
    failures = asyncio.run(p.execute_all())
    assert failures == {}
    assert max(peak) == 1
    assert len(peak) == 2
    assert set(p.images) == {"b1", "b2", "b3"}
    assert p.snapshot.get("executing_all") is False


def test_execute_all_continues_after_failure(brief_service):
    p = at_briefs_review(brief_service)
    original = brief_service.generate_icon

    async def flaky(prompt, seed=None, size="1K"):
        if "prompt 2" in prompt:
            raise ExternalServiceError("no image")
        return await original(prompt, seed, size)

    brief_service.generate_icon = flaky
    failures = asyncio.run(p.execute_all())
    assert list(failures) == ["b2"]
    assert set(p.images) == {"b1", "b3"}


def test_back_navigation_and_reset(brief_service):
    p = at_briefs_review(brief_service)
    snap = p.go_to_step(BriefState.ANALYSIS_REVIEW)
    assert snap.output("briefs") is not None
    with pytest.raises(InvalidTransitionError):
        p.go_to_step(BriefState.BRIEFS_REVIEW)
    snap = p.reset()
    assert snap.state == BriefState.IDLE
    assert snap.get("screenshots") == ()
