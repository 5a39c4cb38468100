from dotenv import load_dotenv
from dataclasses import dataclass, fields
from typing import Optional
from pathlib import Path
import json
import os

from pagepulse.constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_MAX_CONCURRENT_ANALYSES,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    MOBILE_CAPTURE_TIMEOUT_MS,
    DESKTOP_CAPTURE_TIMEOUT_MS,
    WATERFALL_CAPTURE_TIMEOUT_MS,
    CHALLENGE_WAIT_SECONDS,
    CHALLENGE_POLL_INTERVAL_SECONDS,
    METRICS_SETTLE_SECONDS,
    FALLBACK_FETCH_TIMEOUT_SECONDS,
    LIGHTHOUSE_TIMEOUT_SECONDS,
    MOBILE_USER_AGENT,
    DESKTOP_USER_AGENT,
    MAX_HISTORY_PER_URL,
)

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    LOG_LEVEL = os.getenv("PAGEPULSE_LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("PAGEPULSE_LOG_FILE")


settings = Settings()


def _coerce(raw: str, field_type):
    """Convert an environment string to the dataclass field type."""
    if field_type in (bool, "bool"):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if field_type in (int, "int"):
        return int(raw)
    if field_type in (float, "float"):
        return float(raw)
    return raw


def _apply_env(instance, prefix: str) -> None:
    for f in fields(instance):
        env_value = os.getenv(f"{prefix}{f.name.upper()}")
        if env_value is None:
            continue
        try:
            setattr(instance, f.name, _coerce(env_value, f.type))
        except ValueError:
            pass  # Keep default if conversion fails


@dataclass
class OrchestratorConfig:
    """Configuration for the analysis orchestrator."""

    # Admission control
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    max_concurrent_analyses: int = DEFAULT_MAX_CONCURRENT_ANALYSES

    # Browser
    headless: bool = True
    mobile_user_agent: str = MOBILE_USER_AGENT
    desktop_user_agent: str = DESKTOP_USER_AGENT

    # Time budgets
    mobile_navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    desktop_navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    mobile_capture_timeout_ms: int = MOBILE_CAPTURE_TIMEOUT_MS
    desktop_capture_timeout_ms: int = DESKTOP_CAPTURE_TIMEOUT_MS
    waterfall_capture_timeout_ms: int = WATERFALL_CAPTURE_TIMEOUT_MS
    challenge_wait_seconds: float = CHALLENGE_WAIT_SECONDS
    challenge_poll_interval_seconds: float = CHALLENGE_POLL_INTERVAL_SECONDS
    metrics_settle_seconds: float = METRICS_SETTLE_SECONDS
    fallback_fetch_timeout_seconds: float = FALLBACK_FETCH_TIMEOUT_SECONDS

    # Measurement engine (Lighthouse)
    use_lighthouse: bool = True
    lighthouse_path: str = "lighthouse"
    lighthouse_timeout_seconds: int = LIGHTHOUSE_TIMEOUT_SECONDS

    # History
    max_history_per_url: int = MAX_HISTORY_PER_URL

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed with PAGEPULSE_,
        e.g. PAGEPULSE_COOLDOWN_SECONDS=60

        Returns:
            OrchestratorConfig with values from environment
        """
        config = cls()
        _apply_env(config, "PAGEPULSE_")
        return config


@dataclass
class PerformanceThresholds:
    """Core Web Vitals thresholds (milliseconds, CLS is unitless)."""

    lcp_good: float = 2500
    lcp_poor: float = 4000
    fcp_good: float = 1800
    fcp_poor: float = 3000
    cls_good: float = 0.1
    cls_poor: float = 0.25
    tbt_good: float = 200
    tbt_poor: float = 600
    ttfb_good: float = 800
    ttfb_poor: float = 1800
    fid_good: float = 100
    fid_poor: float = 300

    @classmethod
    def from_env(cls) -> "PerformanceThresholds":
        """Load thresholds from environment variables.

        Environment variables should be prefixed with PAGEPULSE_THRESHOLD_
        e.g., PAGEPULSE_THRESHOLD_LCP_GOOD=2000
        """
        thresholds = cls()
        _apply_env(thresholds, "PAGEPULSE_THRESHOLD_")
        return thresholds

    @classmethod
    def from_file(cls, path: str) -> "PerformanceThresholds":
        """Load thresholds from a JSON configuration file.

        Args:
            path: Path to JSON configuration file

        Returns:
            PerformanceThresholds with values from file
        """
        thresholds = cls()
        file_path = Path(path)

        if not file_path.exists():
            return thresholds

        with open(file_path, 'r') as f:
            config = json.load(f)

        threshold_config = config.get('thresholds', config)

        for f in fields(thresholds):
            if f.name in threshold_config:
                setattr(thresholds, f.name, float(threshold_config[f.name]))

        return thresholds

    def bounds(self, metric: str) -> Optional[tuple[float, float]]:
        """Return (good, poor) for a metric, or None if unknown."""
        good = getattr(self, f"{metric}_good", None)
        poor = getattr(self, f"{metric}_poor", None)
        if good is None or poor is None:
            return None
        return good, poor

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
