import asyncio
import base64
import io

import pytest
from PIL import Image

from icon_evolver.models import (
    AppAnalysis,
    CreativeBrief,
    EntertainmentInsights,
    EvolutionSuggestions,
    ImagePayload,
    TrendCorpus,
    TrendSynthesis,
)


def png_bytes(color=(255, 128, 0), size=(8, 8), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def png_payload(color=(255, 128, 0)) -> ImagePayload:
    return ImagePayload(data=base64.b64encode(png_bytes(color)).decode("ascii"), mime_type="image/png")


CORPUS_DATA = {
    "movies": [
        {"title": "Dune: Part Two", "relevance": "Sci-fi fans", "visualElements": ["desert", "spice glow"]},
        {"title": "Inside Out 2", "relevance": "Family audience", "visualElements": ["emotion colors"]},
    ],
    "games": [
        {"title": "Zelda", "relevance": "Switch owners", "visualElements": ["triforce"]},
    ],
    "anime": [
        {"title": "Demon Slayer", "relevance": "Huge with teens", "visualElements": ["checkered haori", "water breathing"]},
        {"title": "Frieren", "relevance": "Fantasy fans", "visualElements": ["pastel magic"]},
    ],
    "aesthetics": [
        {"name": "Y2K", "description": "Chrome and bubbles", "examples": ["chrome text"]},
    ],
}

INSIGHTS_DATA = {
    "targetAudience": {"demographics": "Teens 13-19", "interests": ["anime", "selfies"]},
    "entertainmentTrends": CORPUS_DATA,
    "iconAnalysis": {
        "coreSubject": "an orange cat",
        "appFunction": "camera lens shows it is a photo app",
        "currentStyle": "flat cartoon",
        "mustPreserve": ["orange cat", "camera lens"],
    },
}

SUGGESTIONS_DATA = {
    "suggestion": {
        "evolutionDirection": "Give the cat a checkered haori and water-breathing swirls",
        "rationale": "Teens love Demon Slayer",
        "keyElements": ["haori", "water swirl"],
    },
    "functionGuard": {"warning": "Keep the lens", "reason": "It signals the camera"},
}

ANALYSIS_DATA = {
    "appName": "Cat Cam",
    "vertical": "Photo Tool",
    "demographics": "Teens",
    "features": ["filters", "stickers"],
    "competitors": [{"name": "Snapcat", "colorPalette": ["#FF0000"], "style": "flat"}],
    "psychographicProfile": "Wants cute selfies",
    "visualDna": "Orange and white, rounded shapes",
    "seedIconAnalysis": {
        "identified": True,
        "screenshotIndex": 1,
        "primaryMetaphor": "cat",
        "colorPalette": ["#FFA500"],
        "shapeLanguage": "rounded",
        "lightingStyle": "soft",
        "mustPreserve": ["cat"],
    },
}

TRENDS_DATA = {
    "subcultureOverlap": [{"community": "Cosplay", "visualLanguage": "bold costumes"}],
    "visualTrends": [{"trend": "Aura gradients", "description": "soft glows"}],
    "sentimentKeywords": ["cozy", "cute"],
    "entertainmentNarrative": [{"category": "Anime", "items": [{"title": "Demon Slayer", "description": "hit"}]}],
}


def make_briefs(n=3):
    return [
        CreativeBrief.model_validate({
            "id": f"b{i}",
            "directionName": f"Direction {i}",
            "theWhy": "because",
            "prompt": f"prompt {i}",
            "suggestedSize": "1K",
        })
        for i in range(1, n + 1)
    ]


@pytest.fixture
def corpus():
    return TrendCorpus.model_validate(CORPUS_DATA)


@pytest.fixture
def insights():
    return EntertainmentInsights.model_validate(INSIGHTS_DATA)


class FakeEvolutionService:
    """In-memory stand-in for GeminiService; each method can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = {}

    async def _maybe_fail(self, name):
        await asyncio.sleep(0)
        if name in self.fail:
            raise self.fail[name]

    async def analyze_entertainment(self, prompt, icon):
        self.calls.append(("analyze", prompt))
        await self._maybe_fail("analyze")
        return EntertainmentInsights.model_validate(INSIGHTS_DATA)

    async def suggest_evolution(self, prompt):
        self.calls.append(("suggest", prompt))
        await self._maybe_fail("suggest")
        return EvolutionSuggestions.model_validate(SUGGESTIONS_DATA)

    async def generate_icon(self, prompt, seed=None, size="1K"):
        self.calls.append(("generate", prompt, seed, size))
        await self._maybe_fail("generate")
        return png_payload((0, 0, 255))


class FakeBriefService(FakeEvolutionService):

    async def analyze_app(self, prompt, images=()):
        self.calls.append(("analyze_app", prompt, list(images)))
        await self._maybe_fail("analyze_app")
        return AppAnalysis.model_validate(ANALYSIS_DATA)

    async def synthesize_trends(self, prompt):
        self.calls.append(("synthesize", prompt))
        await self._maybe_fail("synthesize")
        return TrendSynthesis.model_validate(TRENDS_DATA)

    async def create_briefs(self, prompt):
        self.calls.append(("briefs", prompt))
        await self._maybe_fail("briefs")
        return make_briefs()


@pytest.fixture
def evolution_service():
    return FakeEvolutionService()


@pytest.fixture
def brief_service():
    return FakeBriefService()
