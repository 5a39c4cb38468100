"""
Analysis history and comparison.

Keeps the most recent results per target (newest first) so a new analysis
can be compared with the previous one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pagepulse.constants import MAX_HISTORY_PER_URL
from pagepulse.infrastructure.rate_limiter import normalize_resource_key
from pagepulse.models import CATEGORIES, AnalysisResult, Device, ResourceKey
from pagepulse.scoring import round_half_up

logger = logging.getLogger(__name__)

COMPARED_METRICS = ("lcp", "fid", "cls", "ttfb")


@dataclass
class MetricChange:
    previous: Optional[float]
    current: Optional[float]

    @property
    def change(self) -> Optional[float]:
        if self.previous is None or self.current is None:
            return None
        return self.current - self.previous

    def to_dict(self) -> dict:
        return {"previous": self.previous, "current": self.current, "change": self.change}


@dataclass
class ComparisonResult:
    """Difference between the two most recent analyses of a target."""
    url: str
    previous: AnalysisResult
    current: AnalysisResult
    improvements: Dict[str, int]
    core_web_vitals_changes: Dict[str, Dict[str, MetricChange]] = field(default_factory=dict)

    @property
    def total_improvements(self) -> int:
        return sum(1 for delta in self.improvements.values() if delta > 0)

    @property
    def total_regressions(self) -> int:
        return sum(1 for delta in self.improvements.values() if delta < 0)

    @property
    def overall_trend(self) -> str:
        """improved / declined / unchanged"""
        if self.total_improvements > self.total_regressions:
            return "improved"
        if self.total_regressions > self.total_improvements:
            return "declined"
        return "unchanged"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "improvements": self.improvements,
            "core_web_vitals_changes": {
                device: {metric: change.to_dict() for metric, change in metrics.items()}
                for device, metrics in self.core_web_vitals_changes.items()
            },
            "summary": {
                "total_improvements": self.total_improvements,
                "total_regressions": self.total_regressions,
                "overall_trend": self.overall_trend,
            },
        }


class AnalysisHistory:
    """In-memory history of results keyed by normalized target."""

    def __init__(self, max_per_url: int = MAX_HISTORY_PER_URL):
        self.max_per_url = max_per_url
        self._history: Dict[ResourceKey, list[AnalysisResult]] = {}

    def store(self, result: AnalysisResult) -> None:
        key = normalize_resource_key(result.url)
        history = self._history.setdefault(key, [])
        history.insert(0, result)
        del history[self.max_per_url:]
        logger.debug(f"Stored analysis for {key} ({len(history)} in history)")

    def history_for(self, url: str) -> list[AnalysisResult]:
        """Stored results for url, newest first."""
        return list(self._history.get(normalize_resource_key(url), []))

    def compare_with_previous(self, url: str) -> Optional[ComparisonResult]:
        """
        Compare the two most recent analyses of url.

        Returns:
            ComparisonResult, or None when fewer than two analyses exist
        """
        history = self.history_for(url)
        if len(history) < 2:
            return None

        current, previous = history[0], history[1]

        improvements = {
            category: (getattr(current.scores, category) or 0) - (getattr(previous.scores, category) or 0)
            for category in CATEGORIES
        }

        vitals_changes = {}
        for device in Device:
            before = previous.core_web_vitals.get(device)
            after = current.core_web_vitals.get(device)
            vitals_changes[device.value] = {
                metric: MetricChange(
                    previous=getattr(before, metric) if before else None,
                    current=getattr(after, metric) if after else None,
                )
                for metric in COMPARED_METRICS
            }

        return ComparisonResult(
            url=current.url,
            previous=previous,
            current=current,
            improvements=improvements,
            core_web_vitals_changes=vitals_changes,
        )

    def summary(self, url: str) -> Dict[str, Any]:
        """Count, last analysis time and average scores for url."""
        history = self.history_for(url)
        if not history:
            return {
                "has_history": False,
                "total_analyses": 0,
                "last_analyzed": None,
                "average_scores": {category: 0 for category in CATEGORIES},
            }

        return {
            "has_history": True,
            "total_analyses": len(history),
            "last_analyzed": history[0].analyzed_at.isoformat(),
            "average_scores": {
                category: round_half_up(
                    sum(getattr(result.scores, category) or 0 for result in history) / len(history)
                )
                for category in CATEGORIES
            },
        }

    def clear(self, url: str) -> None:
        self._history.pop(normalize_resource_key(url), None)

    def stored_keys(self) -> list[ResourceKey]:
        return list(self._history)

    def __len__(self) -> int:
        return len(self._history)
