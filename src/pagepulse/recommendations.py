"""
Merging of per-device results.

The mobile and desktop runs usually detect the same issues. Recommendations
with the same category and the same title once device words are removed are
collapsed into one entry whose description speaks of "mobile and desktop".
"""

import re
from typing import Iterable, Optional

from pagepulse.models import CATEGORIES, CategoryScores, Diagnostic, Recommendation
from pagepulse.scoring import round_half_up

COMBINED_DEVICE_PHRASE = "mobile and desktop"

# "on mobile", "for desktop", "(mobile)", "Mobile" ...
_DEVICE_IN_TITLE = re.compile(
    r"\s*(?:\b(?:on|for)\s+)?\(?\b(?:mobile|desktop)\b\)?",
    re.IGNORECASE,
)
_DEVICE_WORD = re.compile(r"\b(?:mobile\s+and\s+desktop|mobile|desktop)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

_TYPE_RANK = {"error": 0, "warning": 1, "success": 2}
_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


def strip_device_words(title: str) -> str:
    """Remove device wording from a title."""
    stripped = _DEVICE_IN_TITLE.sub("", title)
    return _WHITESPACE.sub(" ", stripped).strip(" -:")


def recommendation_key(recommendation: Recommendation) -> tuple[str, str]:
    return recommendation.category, strip_device_words(recommendation.title).lower()


def combine_device_wording(text: str) -> str:
    """Replace every device word in text with the combined phrase."""
    return _DEVICE_WORD.sub(COMBINED_DEVICE_PHRASE, text)


def merge_recommendations(
    mobile: Iterable[Recommendation],
    desktop: Iterable[Recommendation],
) -> list[Recommendation]:
    """
    Union of two recommendation lists, one entry per logical item.

    Items are matched on (category, title without device words). A merged
    item keeps the more severe type and priority of the pair. Items found
    on one device only are returned unchanged.

    Args:
        mobile: Recommendations from the mobile run
        desktop: Recommendations from the desktop run

    Returns:
        Merged recommendations, first-seen order
    """
    merged: dict[tuple[str, str], Recommendation] = {}
    seen_on: dict[tuple[str, str], int] = {}

    for device_index, recommendations in enumerate((mobile, desktop)):
        for recommendation in recommendations:
            key = recommendation_key(recommendation)
            existing = merged.get(key)

            if existing is None:
                merged[key] = recommendation
                seen_on[key] = device_index
                continue

            if seen_on[key] == device_index:
                continue  # duplicate within one device

            merged[key] = _combine(existing, recommendation)

    return list(merged.values())


def _combine(first: Recommendation, second: Recommendation) -> Recommendation:
    type_ = min(first.type, second.type, key=lambda t: _TYPE_RANK.get(t, len(_TYPE_RANK)))
    priority = min(
        first.priority,
        second.priority,
        key=lambda p: _PRIORITY_RANK.get(p, len(_PRIORITY_RANK)),
    )
    return Recommendation(
        category=first.category,
        title=strip_device_words(first.title),
        description=combine_device_wording(first.description),
        type=type_,
        priority=priority,
        how_to_fix=first.how_to_fix or second.how_to_fix,
    )


def merge_diagnostics(
    mobile: Iterable[Diagnostic],
    desktop: Iterable[Diagnostic],
) -> list[Diagnostic]:
    """Union of diagnostics, deduplicated by (category, id); the lower score wins."""
    merged: dict[tuple[str, str], Diagnostic] = {}
    for diagnostic in [*mobile, *desktop]:
        key = (diagnostic.category, diagnostic.id)
        existing = merged.get(key)
        if existing is None:
            merged[key] = diagnostic
        elif diagnostic.score is not None and (existing.score is None or diagnostic.score < existing.score):
            merged[key] = diagnostic
    return list(merged.values())


def average_score(first: Optional[int], second: Optional[int]) -> Optional[int]:
    """Mean of two scores rounded half up; a missing side defers to the other."""
    if first is None:
        return second
    if second is None:
        return first
    return round_half_up((first + second) / 2)


def average_scores(first: CategoryScores, second: CategoryScores) -> CategoryScores:
    return CategoryScores(**{
        name: average_score(getattr(first, name), getattr(second, name))
        for name in CATEGORIES
    })
