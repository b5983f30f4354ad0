"""
gemini.py — Generative content service adapter (google-genai).

Every method takes an already-built instruction string, sends it (with any
inline images) to Gemini, and turns the reply into a typed entity:

  1. transport errors / unparseable body → ExternalServiceError
  2. JSON checked against the declared required-shape → ResponseSchemaError
  3. only then is the pydantic model built (its failures → ResponseSchemaError)

Transient overload errors (503 / unavailable / quota) are retried a fixed
number of times with a fixed delay; nothing else is retried.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any, List, Mapping, Optional, Sequence, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from .config import Settings, load_settings
from .errors import ExternalServiceError, ResponseSchemaError
from .images import payload_bytes
from .models import (
    AppAnalysis,
    CreativeBrief,
    EntertainmentInsights,
    EvolutionSuggestions,
    GroundingSource,
    ImagePayload,
    TrendSynthesis,
)
from .validators import (
    ANALYSIS_SHAPE,
    BRIEFS_SHAPE,
    INSIGHTS_SHAPE,
    SUGGESTIONS_SHAPE,
    TRENDS_SHAPE,
    require_structured,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_TRANSIENT_MARKERS = ("503", "unavailable", "overloaded", "quota")


# ── Response schemas (Gemini OpenAPI subset) ──────────────────────────────────

def _string() -> dict:
    return {"type": "STRING"}


def _strings() -> dict:
    return {"type": "ARRAY", "items": {"type": "STRING"}}


def _object(properties: Mapping[str, dict], required: Optional[Sequence[str]] = None) -> dict:
    return {
        "type": "OBJECT",
        "properties": dict(properties),
        "required": list(required if required is not None else properties.keys()),
    }


SUGGESTIONS_SCHEMA = _object({
    "suggestion": _object({
        "evolutionDirection": _string(),
        "rationale": _string(),
        "keyElements": _strings(),
    }),
    "functionGuard": _object({
        "warning": _string(),
        "reason": _string(),
    }),
})

ANALYSIS_SCHEMA = _object(
    {
        "appName": _string(),
        "appCategory": _string(),
        "vertical": _string(),
        "demographics": _string(),
        "features": _strings(),
        "competitors": {
            "type": "ARRAY",
            "items": _object({"name": _string(), "colorPalette": _strings(), "style": _string()}),
        },
        "psychographicProfile": _object({
            "functionalMotivation": _string(),
            "emotionalMotivation": _string(),
            "socialMotivation": _string(),
            "summary": _string(),
        }),
        "visualDna": _string(),
        "seedIconAnalysis": _object(
            {
                "identified": {"type": "BOOLEAN"},
                "screenshotIndex": {"type": "INTEGER"},
                "primaryMetaphor": _string(),
                "colorPalette": _strings(),
                "shapeLanguage": _string(),
                "lightingStyle": _string(),
                "mustPreserve": _strings(),
            },
            required=["identified", "primaryMetaphor", "colorPalette", "shapeLanguage", "lightingStyle", "mustPreserve"],
        ),
    },
    required=["vertical", "demographics", "features", "competitors", "psychographicProfile", "visualDna"],
)

BRIEFS_SCHEMA = _object({
    "briefs": {
        "type": "ARRAY",
        "items": _object(
            {
                "id": _string(),
                "directionName": _string(),
                "theWhy": _string(),
                "designThesis": _string(),
                "prompt": _string(),
                "suggestedSize": {"type": "STRING", "enum": ["1K", "2K", "4K"]},
                "ctrRationale": _string(),
                "cvrRationale": _string(),
                "competitorDifferentiation": _string(),
            },
            required=[
                "id", "directionName", "theWhy", "prompt", "suggestedSize",
                "ctrRationale", "cvrRationale", "competitorDifferentiation",
            ],
        ),
    },
})


# ── Helpers ───────────────────────────────────────────────────────────────────

def image_part(payload: ImagePayload) -> types.Part:
    return types.Part.from_bytes(data=payload_bytes(payload), mime_type=payload.mime_type)


def strip_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("```")[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.rsplit("```", 1)[0]
    return raw.strip()


def grounding_sources(response: Any) -> List[GroundingSource]:
    """Web sources from the first candidate's Search grounding metadata."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    sources: List[GroundingSource] = []
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is not None:
            sources.append(GroundingSource(title=web.title or "Source", uri=web.uri or ""))
    return sources


# ── Service ───────────────────────────────────────────────────────────────────

class GeminiService:
    """
    Thin transport to Gemini for every pipeline stage.

    Prompts are built by prompt_builder; this class only sends them and gates
    what comes back.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Any = None) -> None:
        self.settings = settings or load_settings()
        self.client = client if client is not None else genai.Client(api_key=self.settings.require_api_key())

    # ── transport ─────────────────────────────────────────────────────────────

    def _generate(self, stage: str, model: str, contents: Any, config: types.GenerateContentConfig) -> Any:
        attempts = max(self.settings.max_retries, 1)
        for attempt in range(attempts):
            try:
                return self.client.models.generate_content(model=model, contents=contents, config=config)
            except Exception as e:
                err_str = str(e).lower()
                if any(marker in err_str for marker in _TRANSIENT_MARKERS) and attempt < attempts - 1:
                    logger.warning(
                        f"Gemini busy during {stage}; retrying in {self.settings.retry_delay:g}s "
                        f"({attempt + 1}/{attempts})"
                    )
                    time.sleep(self.settings.retry_delay)
                    continue
                raise ExternalServiceError(f"Gemini request failed: {e}", stage=stage, cause=e) from e
        raise ExternalServiceError("Gemini request failed", stage=stage)

    def _json(self, stage: str, response: Any) -> Any:
        raw = strip_fences(getattr(response, "text", None) or "")
        if not raw:
            raise ExternalServiceError("Gemini returned no content", stage=stage)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ExternalServiceError(f"Gemini returned unparseable JSON: {e}", stage=stage, cause=e) from e

    def _build(self, stage: str, model_cls: Type[M], data: Any) -> M:
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            raise ResponseSchemaError(
                f"Response does not match {model_cls.__name__}: {e.error_count()} error(s)",
                stage=stage,
                cause=e,
            ) from e

    def _structured_config(self, schema: dict) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(response_mime_type="application/json", response_schema=schema)

    def _search_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(tools=[types.Tool(google_search=types.GoogleSearch())])

    # ── evolution flow ────────────────────────────────────────────────────────

    def analyze_entertainment(self, prompt: str, icon: ImagePayload) -> EntertainmentInsights:
        stage = "analyze"
        logger.info("Analysing audience, entertainment trends and seed icon (Gemini + Search)")
        response = self._generate(
            stage,
            self.settings.analysis_model,
            [types.Part.from_text(text=prompt), image_part(icon)],
            self._search_config(),
        )
        data = require_structured(self._json(stage, response), INSIGHTS_SHAPE, stage)
        data = {**data, "sources": [s.model_dump() for s in grounding_sources(response)]}
        return self._build(stage, EntertainmentInsights, data)

    def suggest_evolution(self, prompt: str) -> EvolutionSuggestions:
        stage = "suggest"
        response = self._generate(
            stage,
            self.settings.analysis_model,
            prompt,
            self._structured_config(SUGGESTIONS_SCHEMA),
        )
        data = require_structured(self._json(stage, response), SUGGESTIONS_SHAPE, stage)
        return self._build(stage, EvolutionSuggestions, data)

    def generate_icon(self, prompt: str, seed: Optional[ImagePayload] = None, size: str = "1K") -> ImagePayload:
        """Image generation; the seed icon (if any) goes first, then the instruction."""
        stage = "generate"
        contents: List[Any] = []
        if seed is not None:
            contents.append(image_part(seed))
        contents.append(types.Part.from_text(text=prompt))

        image_config = types.ImageConfig(aspect_ratio="1:1")
        if "pro" in self.settings.image_model:
            image_config = types.ImageConfig(aspect_ratio="1:1", image_size=size)

        response = self._generate(
            stage,
            self.settings.image_model,
            contents,
            types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"], image_config=image_config),
        )
        for candidate in response.candidates or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "inline_data", None) and part.inline_data.data:
                    data = part.inline_data.data
                    if isinstance(data, bytes):
                        data = base64.b64encode(data).decode("ascii")
                    return ImagePayload(data=data, mime_type=part.inline_data.mime_type or "image/png")
        raise ResponseSchemaError("Generation failed to return an image", stage=stage)

    # ── brief flow ────────────────────────────────────────────────────────────

    def analyze_app(self, prompt: str, images: Sequence[ImagePayload] = ()) -> AppAnalysis:
        stage = "analyze"
        contents: List[Any] = [types.Part.from_text(text=prompt)]
        contents.extend(image_part(img) for img in images)
        response = self._generate(stage, self.settings.analysis_model, contents, self._structured_config(ANALYSIS_SCHEMA))
        data = require_structured(self._json(stage, response), ANALYSIS_SHAPE, stage)
        return self._build(stage, AppAnalysis, data)

    def synthesize_trends(self, prompt: str) -> TrendSynthesis:
        stage = "synthesize"
        response = self._generate(stage, self.settings.analysis_model, prompt, self._search_config())
        data = require_structured(self._json(stage, response), TRENDS_SHAPE, stage)
        data = {**data, "sources": [s.model_dump() for s in grounding_sources(response)]}
        return self._build(stage, TrendSynthesis, data)

    def create_briefs(self, prompt: str) -> List[CreativeBrief]:
        stage = "brief"
        response = self._generate(stage, self.settings.analysis_model, prompt, self._structured_config(BRIEFS_SCHEMA))
        data = require_structured(self._json(stage, response), BRIEFS_SHAPE, stage)
        return [self._build(stage, CreativeBrief, item) for item in data["briefs"]]


