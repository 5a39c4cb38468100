"""Admission-controlled page performance, accessibility and SEO analysis."""

__version__ = "0.1.0"

from pagepulse.config import OrchestratorConfig, PerformanceThresholds, settings
from pagepulse.exceptions import (
    PagePulseError,
    RateLimited,
    SiteProtectionActive,
    EngineFailure,
    CaptureTimeout,
    InternalError,
)
from pagepulse.models import (
    AnalysisResult,
    AnalysisSource,
    CategoryScores,
    CoreWebVitals,
    Device,
    DeviceResult,
    QueueStatus,
    ResourceTimingRecord,
    WaterfallSummary,
)
from pagepulse.waterfall import WaterfallAggregator
from pagepulse.history import AnalysisHistory, ComparisonResult
from pagepulse.orchestrator import Orchestrator

__all__ = [
    "Orchestrator",
    "OrchestratorConfig",
    "PerformanceThresholds",
    "settings",
    # Errors
    "PagePulseError",
    "RateLimited",
    "SiteProtectionActive",
    "EngineFailure",
    "CaptureTimeout",
    "InternalError",
    # Results
    "AnalysisResult",
    "AnalysisSource",
    "CategoryScores",
    "CoreWebVitals",
    "Device",
    "DeviceResult",
    "QueueStatus",
    "ResourceTimingRecord",
    "WaterfallSummary",
    "WaterfallAggregator",
    "AnalysisHistory",
    "ComparisonResult",
]
