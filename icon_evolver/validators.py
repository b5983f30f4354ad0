"""
validators.py — Trust-boundary gate for user input and service responses.

Every free-text value that ends up inside a generation instruction passes
through sanitize(); every structured payload coming back from the generative
service is checked against a declared required-shape before any typed entity
is built from it.

Shapes are plain dicts mapping a required top-level field to what it must be:
  str / list / dict      — exact JSON kind
  (str, dict)            — any of several kinds
  {...nested shape...}   — an object that itself satisfies the nested shape
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .errors import ResponseSchemaError

MAX_INPUT_LENGTH = 5000
MAX_DESCRIPTION_LENGTH = 2000
MAX_FIELD_LENGTH = 500
MAX_PROMPT_LENGTH = 3000
MAX_SCREENSHOTS = 10
MAX_IMAGE_SIZE_BYTES = 10 * 1024 * 1024

ALLOWED_IMAGE_TYPES = (
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
)

ICON_SIZES = ("1K", "2K", "4K")


# ── Declared response shapes ──────────────────────────────────────────────────

ICON_ANALYSIS_SHAPE: Dict[str, Any] = {
    "coreSubject": str,
    "appFunction": str,
    "currentStyle": str,
    "mustPreserve": list,
}

TREND_CORPUS_SHAPE: Dict[str, Any] = {
    "movies": list,
    "games": list,
    "anime": list,
    "aesthetics": list,
}

INSIGHTS_SHAPE: Dict[str, Any] = {
    "targetAudience": dict,
    "entertainmentTrends": TREND_CORPUS_SHAPE,
    "iconAnalysis": ICON_ANALYSIS_SHAPE,
}

SUGGESTIONS_SHAPE: Dict[str, Any] = {
    "suggestion": {
        "evolutionDirection": str,
        "rationale": str,
        "keyElements": list,
    },
    "functionGuard": {
        "warning": str,
        "reason": str,
    },
}

# psychographicProfile used to be a plain string; both forms are accepted
ANALYSIS_SHAPE: Dict[str, Any] = {
    "vertical": str,
    "demographics": str,
    "features": list,
    "competitors": list,
    "psychographicProfile": (str, dict),
}

TRENDS_SHAPE: Dict[str, Any] = {
    "subcultureOverlap": list,
    "visualTrends": list,
    "sentimentKeywords": list,
    "entertainmentNarrative": list,
}

BRIEFS_SHAPE: Dict[str, Any] = {
    "briefs": list,
}


# ── Sanitization ──────────────────────────────────────────────────────────────

def sanitize(text: Any, max_len: int = MAX_INPUT_LENGTH) -> str:
    """Trim, truncate to max_len and drop angle brackets. Never raises."""
    if not text or not isinstance(text, str):
        return ""
    return text.strip()[:max(max_len, 0)].replace("<", "").replace(">", "")


def sanitize_list(items: Any, max_len: int = MAX_FIELD_LENGTH) -> List[str]:
    """Sanitize every string in a list, dropping entries that end up empty."""
    if not isinstance(items, (list, tuple)):
        return []
    cleaned = (sanitize(item, max_len) for item in items)
    return [item for item in cleaned if item]


# ── Image payloads ────────────────────────────────────────────────────────────

def validate_image_payload(obj: Any) -> bool:
    """True only for a mapping with string `data` and an allowed `mimeType`."""
    if not obj or not isinstance(obj, Mapping):
        return False
    return (
        isinstance(obj.get("data"), str)
        and isinstance(obj.get("mimeType"), str)
        and obj["mimeType"] in ALLOWED_IMAGE_TYPES
    )


def filter_valid_items(items: Any, max_count: int = MAX_SCREENSHOTS) -> list:
    """First max_count entries of items, keeping only valid image payloads."""
    if not isinstance(items, (list, tuple)):
        return []
    return [item for item in list(items)[:max(max_count, 0)] if validate_image_payload(item)]


def estimate_base64_size(data: str) -> int:
    """Decoded byte size of a base64 string (base64 is ~4/3 the binary size)."""
    return (len(data) * 3) // 4


def validate_size(size: Any) -> bool:
    return isinstance(size, str) and size in ICON_SIZES


# ── Structured payloads ───────────────────────────────────────────────────────

def _matches(value: Any, expected: Any) -> bool:
    if isinstance(expected, dict):
        return validate_structured(value, expected)
    if isinstance(expected, tuple):
        return any(_matches(value, option) for option in expected)
    if expected is dict:
        return isinstance(value, dict)
    return isinstance(value, expected)


def validate_structured(obj: Any, required_shape: Mapping[str, Any]) -> bool:
    """
    Check presence and kind of every required top-level field.

    A single missing or mistyped field rejects the whole object.
    """
    if not isinstance(obj, dict):
        return False
    for key, expected in required_shape.items():
        if key not in obj or obj[key] is None:
            return False
        if not _matches(obj[key], expected):
            return False
    return True


def require_structured(
    obj: Any,
    required_shape: Mapping[str, Any],
    stage: Optional[str] = None,
) -> dict:
    """validate_structured() that raises ResponseSchemaError instead of returning False."""
    if not validate_structured(obj, required_shape):
        missing = []
        if isinstance(obj, dict):
            missing = [
                key for key, expected in required_shape.items()
                if key not in obj or obj[key] is None or not _matches(obj[key], expected)
            ]
        detail = f"invalid fields: {', '.join(missing)}" if missing else "response is not a JSON object"
        raise ResponseSchemaError(f"Response failed schema check ({detail})", stage=stage)
    return obj
