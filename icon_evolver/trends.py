"""
trends.py — Reduce a trend corpus to the items a user selected.

Selection identifiers are category-prefixed titles, e.g. "anime-Demon Slayer"
or "aesthetic-Y2K". Matching is case-insensitive; identifiers that match
nothing are ignored. Categories are always emitted in the same order
(movies, games, anime, aesthetics) whatever order the selection was made in.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from .models import TrendCorpus
from .validators import MAX_FIELD_LENGTH, sanitize

logger = logging.getLogger(__name__)

# (corpus field, id prefix, block heading)
CATEGORY_ORDER: Tuple[Tuple[str, str, str], ...] = (
    ("movies", "movie", "Movie & TV trends"),
    ("games", "game", "Game trends"),
    ("anime", "anime", "Anime & manga trends"),
    ("aesthetics", "aesthetic", "Aesthetic trends"),
)


@dataclass(frozen=True)
class TrendFilterResult:
    """Text context for suggestion synthesis plus the matched display names."""
    context: str = ""
    selected_names: List[str] = field(default_factory=list)

    @property
    def has_selection(self) -> bool:
        return bool(self.context)


def trend_id(prefix: str, title: str) -> str:
    return f"{prefix}-{title}"


def _entry_title(category: str, item) -> str:
    return item.name if category == "aesthetics" else item.title


def _entry_line(category: str, item) -> str:
    if category == "aesthetics":
        examples = ", ".join(sanitize(e, MAX_FIELD_LENGTH) for e in item.examples)
        return (
            f"- {sanitize(item.name, MAX_FIELD_LENGTH)}: {sanitize(item.description, MAX_FIELD_LENGTH)}\n"
            f"  Examples: {examples}"
        )
    elements = ", ".join(sanitize(v, MAX_FIELD_LENGTH) for v in item.visual_elements)
    return (
        f"- {sanitize(item.title, MAX_FIELD_LENGTH)}: {sanitize(item.relevance, MAX_FIELD_LENGTH)}\n"
        f"  Visual elements: {elements}"
    )


def all_trend_ids(corpus: TrendCorpus) -> List[str]:
    """Every selectable identifier in canonical category order."""
    ids: List[str] = []
    for category, prefix, _ in CATEGORY_ORDER:
        for item in getattr(corpus, category):
            ids.append(trend_id(prefix, _entry_title(category, item)))
    return ids


def find_ambiguous_ids(corpus: TrendCorpus) -> List[str]:
    """Identifiers (lower-cased) that more than one corpus entry would answer to."""
    counts = Counter(tid.lower() for tid in all_trend_ids(corpus))
    return sorted(tid for tid, n in counts.items() if n > 1)


def filter_trends(corpus: TrendCorpus, selection: Iterable[str]) -> TrendFilterResult:
    """
    Keep only corpus entries whose `prefix-title` identifier is in selection.

    A category with no matches is omitted entirely. An empty selection yields
    an empty context, which tells the suggestion stage to fall back to a
    generic quality-uplift request.
    """
    selected = {s.lower() for s in selection if isinstance(s, str) and s}
    if not selected:
        return TrendFilterResult()

    ambiguous = find_ambiguous_ids(corpus)
    if ambiguous:
        logger.warning(f"Trend identifiers match several entries: {', '.join(ambiguous)}")

    sections: List[str] = []
    names: List[str] = []
    for category, prefix, heading in CATEGORY_ORDER:
        matched = [
            item for item in getattr(corpus, category)
            if trend_id(prefix, _entry_title(category, item)).lower() in selected
        ]
        if not matched:
            continue
        names.extend(_entry_title(category, item) for item in matched)
        lines = "\n".join(_entry_line(category, item) for item in matched)
        sections.append(f"## {heading}\n{lines}")

    return TrendFilterResult(context="\n\n".join(sections), selected_names=names)
