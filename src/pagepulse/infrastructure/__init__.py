"""
Infrastructure Package.

Admission control, the bounded job queue, the Playwright browser engine and
timed captures.
"""

from .rate_limiter import (
    AdmissionConfig,
    AdmissionController,
    normalize_resource_key,
)
from .job_queue import BoundedJobQueue
from .browser_engine import (
    BrowserEngine,
    STEALTH_SCRIPTS,
    COMBINED_STEALTH_SCRIPT,
)
from .performance_metrics import (
    BrowserPerformanceMetrics,
    LongTaskEntry,
    inject_performance_observers,
    collect_performance_metrics,
    measure_page_performance,
    collect_page_signals,
    collect_resource_timings,
)
from .timed_capture import (
    with_timeout,
    race,
    capture_screenshot,
    capture_waterfall,
)

__all__ = [
    # Admission control
    "AdmissionConfig",
    "AdmissionController",
    "normalize_resource_key",
    "BoundedJobQueue",
    # Browser
    "BrowserEngine",
    "STEALTH_SCRIPTS",
    "COMBINED_STEALTH_SCRIPT",
    # Performance metrics
    "BrowserPerformanceMetrics",
    "LongTaskEntry",
    "inject_performance_observers",
    "collect_performance_metrics",
    "measure_page_performance",
    "collect_page_signals",
    "collect_resource_timings",
    # Timed captures
    "with_timeout",
    "race",
    "capture_screenshot",
    "capture_waterfall",
]
