# src/pagepulse/constants.py
"""Centralized constants for the analysis pipeline.

For user-configurable values, see config.py (OrchestratorConfig and
PerformanceThresholds).
"""

# =============================================================================
# Admission Control
# =============================================================================

# Minimum seconds between two admitted runs for the same target
DEFAULT_COOLDOWN_SECONDS = 30

# Seconds between sweeps of stale rate-limit entries
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60

# Entries idle for this many cooldown windows are evicted
SWEEP_COOLDOWN_MULTIPLIER = 2

# Maximum number of analyses running at the same time
DEFAULT_MAX_CONCURRENT_ANALYSES = 20


# =============================================================================
# Device Profiles
# =============================================================================

MOBILE_VIEWPORT_WIDTH = 375
MOBILE_VIEWPORT_HEIGHT = 812
MOBILE_DEVICE_SCALE_FACTOR = 3

DESKTOP_VIEWPORT_WIDTH = 1350
DESKTOP_VIEWPORT_HEIGHT = 940

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


# =============================================================================
# Timeouts (milliseconds unless noted)
# =============================================================================

DEFAULT_NAVIGATION_TIMEOUT_MS = 45000

# Mobile captures a smaller area, so it gets the shorter budget
MOBILE_CAPTURE_TIMEOUT_MS = 15000
DESKTOP_CAPTURE_TIMEOUT_MS = 25000
WATERFALL_CAPTURE_TIMEOUT_MS = 30000

# Challenge walls often clear themselves after a JS check
CHALLENGE_WAIT_SECONDS = 15.0
CHALLENGE_POLL_INTERVAL_SECONDS = 1.0

# Time for LCP/CLS observers to settle after load
METRICS_SETTLE_SECONDS = 2.0

FALLBACK_FETCH_TIMEOUT_SECONDS = 10.0

LIGHTHOUSE_TIMEOUT_SECONDS = 90


# =============================================================================
# Challenge Detection
# =============================================================================

# Lowercased markers found in the title of challenge interstitials
CHALLENGE_TITLE_MARKERS = (
    "just a moment",
    "attention required",
    "checking your browser",
    "verify you are human",
    "security check",
    "access denied",
    "ddos-guard",
    "please wait",
)

# Lowercased markers found in the body text of challenge interstitials
CHALLENGE_BODY_MARKERS = (
    "checking if the site connection is secure",
    "verify you are human",
    "verifying you are human",
    "enable javascript and cookies to continue",
    "needs to review the security of your connection",
    "cf-browser-verification",
    "challenges.cloudflare.com",
    "press & hold",
    "are you a robot",
    "captcha",
)

# Only the first part of the body is inspected
CHALLENGE_BODY_SAMPLE_CHARS = 5000


# =============================================================================
# Waterfall
# =============================================================================

# Estimated size after compression, as a fraction of the raw size
COMPRESSION_RESIDUAL_RATIOS = {
    "script": 0.30,
    "stylesheet": 0.25,
    "document": 0.20,
    "jpeg": 0.90,
    "png": 0.70,
}
DEFAULT_COMPRESSION_RESIDUAL_RATIO = 0.50

# Resource types that gate first render
CRITICAL_RESOURCE_TYPES = ("document", "stylesheet", "font")


# =============================================================================
# Scoring
# =============================================================================

# Weights for the timing-based performance score (sum to 1.0)
PERFORMANCE_METRIC_WEIGHTS = {
    "fcp": 0.10,
    "lcp": 0.25,
    "tbt": 0.30,
    "cls": 0.25,
    "ttfb": 0.10,
}

SCORE_GOOD = 100
SCORE_NEEDS_IMPROVEMENT = 65
SCORE_POOR = 25


# =============================================================================
# History
# =============================================================================

MAX_HISTORY_PER_URL = 10
