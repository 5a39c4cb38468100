"""Data models for the analysis pipeline."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

ResourceKey = str


class AnalysisSource(Enum):
    """Which pipeline produced a result."""
    BROWSER = "browser"
    HEURISTIC = "heuristic"


class Device(Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"


CATEGORIES = ("performance", "accessibility", "best_practices", "seo")


@dataclass
class RateLimitEntry:
    """Admission state for one resource key."""
    key: ResourceKey
    last_run_at: float
    attempt_count: int = 0


@dataclass
class RateLimitDecision:
    """Outcome of an admission check."""
    allowed: bool
    retry_after_seconds: Optional[int] = None


@dataclass
class QueueEntry:
    """A request waiting for a free execution slot."""
    key: ResourceKey
    enqueued_at: float
    completion: asyncio.Future


@dataclass
class QueueStatus:
    """Snapshot of the job queue for UI polling."""
    active: int
    queued: int
    ceiling: int
    cooldown_seconds: int

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "queued": self.queued,
            "ceiling": self.ceiling,
            "cooldown_seconds": self.cooldown_seconds,
        }


@dataclass(frozen=True)
class DeviceProfile:
    """Browser emulation settings for one device variant."""
    device: Device
    viewport_width: int
    viewport_height: int
    user_agent: str
    is_mobile: bool
    has_touch: bool
    device_scale_factor: float
    navigation_timeout_ms: int
    capture_timeout_ms: int

    @property
    def name(self) -> str:
        return self.device.value

    @property
    def viewport(self) -> dict:
        return {"width": self.viewport_width, "height": self.viewport_height}


@dataclass(frozen=True)
class ResourceTimingRecord:
    """Timing for a single fetched resource, relative to navigation start (ms)."""
    url: str
    type: str
    size_bytes: int
    start_time: float
    end_time: float
    cached: bool = False
    render_blocking: bool = False
    critical: bool = False
    mime_type: str = ""

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)


@dataclass(frozen=True)
class WaterfallSummary:
    """Aggregate metrics derived from a set of resource timings."""
    total_resources: int
    total_size: int
    total_duration: float
    render_blocking_count: int
    critical_count: int
    max_parallelism: int
    cache_hit_rate: float
    compression_savings_pct: float

    def to_dict(self) -> dict:
        return {
            "total_resources": self.total_resources,
            "total_size": self.total_size,
            "total_duration": self.total_duration,
            "render_blocking_count": self.render_blocking_count,
            "critical_count": self.critical_count,
            "max_parallelism": self.max_parallelism,
            "cache_hit_rate": self.cache_hit_rate,
            "compression_savings_pct": self.compression_savings_pct,
        }


@dataclass
class WaterfallTrace:
    """Captured resources plus their summary (single capture per job)."""
    resources: list[ResourceTimingRecord]
    summary: WaterfallSummary

    def to_dict(self) -> dict:
        return {
            "resources": [
                {
                    "url": r.url,
                    "type": r.type,
                    "size_bytes": r.size_bytes,
                    "start_time": r.start_time,
                    "end_time": r.end_time,
                    "cached": r.cached,
                    "render_blocking": r.render_blocking,
                    "critical": r.critical,
                }
                for r in self.resources
            ],
            "summary": self.summary.to_dict(),
        }


@dataclass
class CoreWebVitals:
    """Core Web Vitals for one device. None means not measured."""
    lcp: Optional[float] = None  # ms
    fid: Optional[float] = None  # ms
    cls: Optional[float] = None  # score
    fcp: Optional[float] = None  # ms
    ttfb: Optional[float] = None  # ms
    tbt: Optional[float] = None  # ms

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in ("lcp", "fid", "cls", "fcp", "ttfb", "tbt")
        )

    def to_dict(self) -> dict:
        return {
            "lcp": self.lcp,
            "fid": self.fid,
            "cls": self.cls,
            "fcp": self.fcp,
            "ttfb": self.ttfb,
            "tbt": self.tbt,
        }


@dataclass
class CategoryScores:
    """0-100 category scores. None means the category was not scored."""
    performance: Optional[int] = None
    accessibility: Optional[int] = None
    best_practices: Optional[int] = None
    seo: Optional[int] = None

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in CATEGORIES}


@dataclass
class Diagnostic:
    """A single audit finding."""
    id: str
    category: str
    title: str
    description: str
    score: Optional[float] = None
    display_value: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "score": self.score,
            "display_value": self.display_value,
        }


@dataclass
class Recommendation:
    """Actionable advice derived from diagnostics."""
    category: str
    title: str
    description: str
    type: str = "warning"  # error / warning / success
    priority: str = "medium"  # high / medium / low
    how_to_fix: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "how_to_fix": self.how_to_fix,
        }


@dataclass
class MeasurementReport:
    """Output of the optional page-measurement engine (Lighthouse)."""
    scores: CategoryScores
    core_web_vitals: CoreWebVitals
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class DeviceResult:
    """Result of one DeviceAnalysisTask run."""
    device: Device
    url: str
    final_url: str
    status_code: Optional[int]
    scores: CategoryScores
    core_web_vitals: CoreWebVitals
    diagnostics: list[Diagnostic] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    measured_by: str = "browser"  # browser / lighthouse
    challenge_waited_seconds: float = 0.0
    duration_seconds: float = 0.0


@dataclass
class HeuristicReport:
    """Partial result of the static-fetch fallback analyzer."""
    url: str
    status_code: int
    title: Optional[str]
    description: Optional[str]
    scores: CategoryScores
    technical_checks: dict[str, bool] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)
    load_time: float = 0.0
    primary_error: Optional[str] = None


@dataclass
class Screenshots:
    """Base64-encoded PNG screenshots; None when a capture degraded."""
    mobile: Optional[str] = None
    desktop: Optional[str] = None

    def to_dict(self) -> dict:
        return {"mobile": self.mobile, "desktop": self.desktop}


@dataclass
class AnalysisJob:
    """Mutable state of one admitted analysis."""
    target: str
    admitted_at: datetime = field(default_factory=datetime.now)
    device_results: dict[Device, DeviceResult] = field(default_factory=dict)
    screenshots: Screenshots = field(default_factory=Screenshots)
    waterfall: Optional[WaterfallTrace] = None
    merged_recommendations: list[Recommendation] = field(default_factory=list)
    degraded_artifacts: list[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Composite report returned by the orchestrator."""
    url: str
    source: AnalysisSource
    scores: CategoryScores
    core_web_vitals: dict[Device, CoreWebVitals]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    screenshots: Screenshots = field(default_factory=Screenshots)
    waterfall: Optional[WaterfallTrace] = None
    technical_checks: dict[str, bool] = field(default_factory=dict)
    degraded_artifacts: list[str] = field(default_factory=list)
    fallback_reason: Optional[str] = None
    analyzed_at: datetime = field(default_factory=datetime.now)

    @property
    def is_partial(self) -> bool:
        """True when the result is a fallback or is missing artifacts."""
        return self.source is AnalysisSource.HEURISTIC or bool(self.degraded_artifacts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "url": self.url,
            "source": self.source.value,
            "is_partial": self.is_partial,
            "scores": self.scores.to_dict(),
            "core_web_vitals": {
                device.value: cwv.to_dict()
                for device, cwv in self.core_web_vitals.items()
            },
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "screenshots": self.screenshots.to_dict(),
            "waterfall": self.waterfall.to_dict() if self.waterfall else None,
            "technical_checks": self.technical_checks,
            "degraded_artifacts": self.degraded_artifacts,
            "fallback_reason": self.fallback_reason,
            "analyzed_at": self.analyzed_at.isoformat(),
        }
