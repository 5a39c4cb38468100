"""
Device analysis task.

One mobile or desktop measurement: open a fresh context, navigate, wait
out a challenge wall, collect browser performance metrics and DOM signals,
then score the page and derive diagnostics and recommendations. When a
measurement engine (Lighthouse) is available its scores and vitals take
precedence over the browser-derived ones.
"""

import logging
import time
from typing import Optional

from pagepulse.config import OrchestratorConfig, PerformanceThresholds
from pagepulse.constants import (
    DESKTOP_VIEWPORT_HEIGHT,
    DESKTOP_VIEWPORT_WIDTH,
    MOBILE_DEVICE_SCALE_FACTOR,
    MOBILE_VIEWPORT_HEIGHT,
    MOBILE_VIEWPORT_WIDTH,
)
from pagepulse.exceptions import EngineFailure, SiteProtectionActive
from pagepulse.infrastructure.browser_engine import BrowserEngine
from pagepulse.infrastructure.performance_metrics import (
    collect_page_signals,
    measure_page_performance,
)
from pagepulse.lighthouse_runner import LighthouseRunner
from pagepulse.models import Device, DeviceProfile, DeviceResult
from pagepulse.recommendations import merge_diagnostics
from pagepulse.scoring import build_diagnostics, build_recommendations, score_categories
from pagepulse.utils.challenge_handler import wait_for_challenge_resolution

logger = logging.getLogger(__name__)


def build_device_profiles(config: OrchestratorConfig) -> dict[Device, DeviceProfile]:
    """Mobile and desktop emulation profiles for a configuration."""
    return {
        Device.MOBILE: DeviceProfile(
            device=Device.MOBILE,
            viewport_width=MOBILE_VIEWPORT_WIDTH,
            viewport_height=MOBILE_VIEWPORT_HEIGHT,
            user_agent=config.mobile_user_agent,
            is_mobile=True,
            has_touch=True,
            device_scale_factor=MOBILE_DEVICE_SCALE_FACTOR,
            navigation_timeout_ms=config.mobile_navigation_timeout_ms,
            capture_timeout_ms=config.mobile_capture_timeout_ms,
        ),
        Device.DESKTOP: DeviceProfile(
            device=Device.DESKTOP,
            viewport_width=DESKTOP_VIEWPORT_WIDTH,
            viewport_height=DESKTOP_VIEWPORT_HEIGHT,
            user_agent=config.desktop_user_agent,
            is_mobile=False,
            has_touch=False,
            device_scale_factor=1,
            navigation_timeout_ms=config.desktop_navigation_timeout_ms,
            capture_timeout_ms=config.desktop_capture_timeout_ms,
        ),
    }


class DeviceAnalysisTask:
    """
    Measures one URL under one device profile.

    Raises SiteProtectionActive for challenge walls and EngineFailure for
    everything else that goes wrong in the browser.
    """

    def __init__(
        self,
        engine: BrowserEngine,
        profile: DeviceProfile,
        config: Optional[OrchestratorConfig] = None,
        thresholds: Optional[PerformanceThresholds] = None,
        measurement_engine: Optional[LighthouseRunner] = None,
    ):
        """
        Initialize device task.

        Args:
            engine: Started browser engine
            profile: Device emulation settings
            config: Time budgets for navigation, challenge wait and settling
            thresholds: Core Web Vitals thresholds for scoring
            measurement_engine: Optional Lighthouse runner
        """
        self.engine = engine
        self.profile = profile
        self.config = config or OrchestratorConfig()
        self.thresholds = thresholds or PerformanceThresholds()
        self.measurement_engine = measurement_engine

    async def run(self, url: str) -> DeviceResult:
        """
        Analyze url for this task's device.

        Returns:
            DeviceResult with scores, vitals, diagnostics and recommendations

        Raises:
            SiteProtectionActive: If a challenge wall did not clear in time
            EngineFailure: On navigation timeout or any browser error
        """
        device = self.profile.name
        started = time.monotonic()
        logger.info(f"Starting {device} analysis of {url}")

        try:
            async with self.engine.acquire(self.profile) as (_, page):
                response = await page.goto(
                    url,
                    wait_until="load",
                    timeout=self.profile.navigation_timeout_ms,
                )
                status_code = response.status if response is not None else None

                waited = await wait_for_challenge_resolution(
                    page,
                    max_wait=self.config.challenge_wait_seconds,
                    poll_interval=self.config.challenge_poll_interval_seconds,
                    device=device,
                )

                metrics = await measure_page_performance(
                    page, url, wait_time=self.config.metrics_settle_seconds
                )
                signals = await collect_page_signals(page)
                final_url = page.url or url

        except SiteProtectionActive:
            raise
        except Exception as e:
            # Playwright's TimeoutError and Error both land here
            logger.warning(f"{device} analysis of {url} failed: {e}")
            raise EngineFailure(f"{device} analysis failed: {e}", device=device) from e

        vitals = metrics.to_core_web_vitals()
        scores = score_categories(vitals, signals, self.thresholds)
        diagnostics = build_diagnostics(vitals, signals, self.thresholds, device)
        measured_by = "browser"

        report = await self._measure_with_engine(url)
        if report is not None:
            measured_by = "lighthouse"
            scores = report.scores
            vitals = report.core_web_vitals
            diagnostics = merge_diagnostics(
                report.diagnostics,
                [d for d in diagnostics if d.category != "performance"],
            )

        duration = time.monotonic() - started
        logger.info(
            f"Finished {device} analysis of {url} in {duration:.1f}s "
            f"(performance={scores.performance}, measured_by={measured_by})"
        )

        return DeviceResult(
            device=self.profile.device,
            url=url,
            final_url=final_url,
            status_code=status_code,
            scores=scores,
            core_web_vitals=vitals,
            diagnostics=diagnostics,
            recommendations=build_recommendations(diagnostics, device),
            measured_by=measured_by,
            challenge_waited_seconds=waited,
            duration_seconds=duration,
        )

    async def _measure_with_engine(self, url: str):
        if self.measurement_engine is None or not self.measurement_engine.is_available():
            return None
        return await self.measurement_engine.measure(url, self.profile)
