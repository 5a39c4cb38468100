"""
Analysis orchestrator.

Entry point for analyzing a URL. A request is admitted by the rate limiter,
waits for a slot in the bounded job queue, and then runs the browser
pipeline: mobile and desktop device tasks plus screenshot and waterfall
captures, all concurrently. Captures degrade to missing artifacts on
timeout. If the browser pipeline fails for any reason other than a
challenge wall, a static heuristic analysis is returned instead.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from pagepulse.config import OrchestratorConfig, PerformanceThresholds
from pagepulse.device_analysis import DeviceAnalysisTask, build_device_profiles
from pagepulse.exceptions import InternalError, PagePulseError, SiteProtectionActive
from pagepulse.fallback_analyzer import HeuristicFallbackAnalyzer
from pagepulse.history import AnalysisHistory
from pagepulse.infrastructure.browser_engine import BrowserEngine
from pagepulse.infrastructure.job_queue import BoundedJobQueue
from pagepulse.infrastructure.rate_limiter import (
    AdmissionConfig,
    AdmissionController,
    normalize_resource_key,
)
from pagepulse.infrastructure.timed_capture import (
    capture_screenshot,
    capture_waterfall,
    with_timeout,
)
from pagepulse.lighthouse_runner import LighthouseRunner
from pagepulse.models import (
    AnalysisJob,
    AnalysisResult,
    AnalysisSource,
    CoreWebVitals,
    Device,
    DeviceProfile,
    DeviceResult,
    QueueStatus,
    WaterfallTrace,
)
from pagepulse.recommendations import average_scores, merge_diagnostics, merge_recommendations
from pagepulse.waterfall import WaterfallAggregator

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Admission-controlled, concurrency-bounded analysis pipeline.

    Usage:
        async with Orchestrator() as orchestrator:
            result = await orchestrator.analyze("https://example.com")

    analyze() raises only RateLimited, SiteProtectionActive or InternalError.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        engine: Optional[BrowserEngine] = None,
        measurement_engine: Optional[LighthouseRunner] = None,
        fallback: Optional[HeuristicFallbackAnalyzer] = None,
        thresholds: Optional[PerformanceThresholds] = None,
        history: Optional[AnalysisHistory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Orchestrator configuration (defaults from environment)
            engine: Browser engine; a headless Playwright engine by default
            measurement_engine: Optional Lighthouse runner
            fallback: Heuristic analyzer used when the browser pipeline fails
            thresholds: Core Web Vitals thresholds for scoring
            history: Store for completed results
            clock: Time source for admission control
        """
        self.config = config or OrchestratorConfig.from_env()
        self.thresholds = thresholds or PerformanceThresholds.from_env()

        self.admission = AdmissionController(
            AdmissionConfig(
                cooldown_seconds=self.config.cooldown_seconds,
                sweep_interval_seconds=self.config.sweep_interval_seconds,
            ),
            clock=clock,
        )
        self.queue = BoundedJobQueue(self.admission, ceiling=self.config.max_concurrent_analyses)

        self.engine = engine or BrowserEngine(headless=self.config.headless)
        if measurement_engine is None and self.config.use_lighthouse:
            measurement_engine = LighthouseRunner(
                lighthouse_path=self.config.lighthouse_path,
                timeout=self.config.lighthouse_timeout_seconds,
            )
        self.measurement_engine = measurement_engine
        self.fallback = fallback or HeuristicFallbackAnalyzer(
            timeout=self.config.fallback_fetch_timeout_seconds,
            user_agent=self.config.desktop_user_agent,
        )
        self.history = history or AnalysisHistory(max_per_url=self.config.max_history_per_url)

        self.profiles = build_device_profiles(self.config)
        self.aggregator = WaterfallAggregator()

    async def start(self) -> None:
        """Start background maintenance (admission sweep)."""
        self.admission.start()
        logger.info(
            f"Orchestrator started (ceiling={self.queue.ceiling}, "
            f"cooldown={self.admission.cooldown_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop background maintenance and close the browser."""
        await self.admission.stop()
        await self.engine.stop()
        logger.info("Orchestrator stopped")

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def analyze(self, target: str) -> AnalysisResult:
        """
        Analyze a URL.

        Args:
            target: URL to analyze

        Returns:
            AnalysisResult from the browser pipeline, or a heuristic result
            (source=HEURISTIC) when the browser pipeline failed

        Raises:
            RateLimited: If the target was analyzed too recently
            SiteProtectionActive: If the target sits behind a challenge wall
            InternalError: If both pipelines failed or something unexpected broke
        """
        key = normalize_resource_key(target)
        try:
            return await self.queue.run(key, lambda: self._analyze_admitted(target))
        except PagePulseError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error analyzing {target}")
            raise InternalError(f"Unexpected error during analysis: {e}") from e

    def status(self) -> QueueStatus:
        """Current queue status for UI polling."""
        return self.queue.status()

    def position_of(self, target: str) -> int:
        """1-based queue position of target, 0 when not queued."""
        return self.queue.position_of(normalize_resource_key(target))

    async def _analyze_admitted(self, target: str) -> AnalysisResult:
        job = AnalysisJob(target=target)
        try:
            result = await self._run_primary(job)
        except SiteProtectionActive as e:
            logger.warning(f"Site protection active for {target}: {e.details}")
            raise
        except Exception as e:
            logger.warning(f"Browser analysis failed for {target}, using heuristic fallback: {e}")
            result = await self._run_fallback(target, e)

        self.history.store(result)
        return result

    async def _run_primary(self, job: AnalysisJob) -> AnalysisResult:
        url = job.target
        await self.engine.start()

        mobile = self.profiles[Device.MOBILE]
        desktop = self.profiles[Device.DESKTOP]

        device_tasks = {
            Device.MOBILE: asyncio.create_task(self._run_device_task(url, mobile)),
            Device.DESKTOP: asyncio.create_task(self._run_device_task(url, desktop)),
        }
        capture_tasks = {
            "screenshot_mobile": asyncio.create_task(self._timed_capture(
                job, "screenshot_mobile",
                lambda: self._capture_screenshot(url, mobile),
                mobile.capture_timeout_ms,
            )),
            "screenshot_desktop": asyncio.create_task(self._timed_capture(
                job, "screenshot_desktop",
                lambda: self._capture_screenshot(url, desktop),
                desktop.capture_timeout_ms,
            )),
            "waterfall": asyncio.create_task(self._timed_capture(
                job, "waterfall",
                lambda: self._capture_waterfall(url, desktop),
                self.config.waterfall_capture_timeout_ms,
            )),
        }
        all_tasks = [*device_tasks.values(), *capture_tasks.values()]

        try:
            await asyncio.wait(device_tasks.values(), return_when=asyncio.FIRST_EXCEPTION)

            errors = self._device_errors(device_tasks.values())
            if errors:
                if not any(isinstance(e, SiteProtectionActive) for e in errors):
                    # The sibling may still hit a challenge wall, which
                    # outranks any other failure.
                    await self._cancel(list(capture_tasks.values()))
                    await asyncio.wait(device_tasks.values())
                    errors = self._device_errors(device_tasks.values())
                await self._cancel(all_tasks)
                protection = [e for e in errors if isinstance(e, SiteProtectionActive)]
                raise protection[0] if protection else errors[0]

            for device, task in device_tasks.items():
                job.device_results[device] = task.result()

            job.screenshots.mobile = await capture_tasks["screenshot_mobile"]
            job.screenshots.desktop = await capture_tasks["screenshot_desktop"]
            job.waterfall = await capture_tasks["waterfall"]
        finally:
            # Reached with tasks still pending only when we are cancelled
            await self._cancel([task for task in all_tasks if not task.done()])

        return self._merge(job)

    @staticmethod
    def _device_errors(tasks) -> list[BaseException]:
        return [
            task.exception()
            for task in tasks
            if task.done() and not task.cancelled() and task.exception() is not None
        ]

    async def _cancel(self, tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _timed_capture(
        self,
        job: AnalysisJob,
        label: str,
        op: Callable[[], Awaitable],
        timeout_ms: int,
    ):
        result = await with_timeout(op, timeout_ms, label)
        if result is None:
            job.degraded_artifacts.append(label)
        return result

    async def _run_device_task(self, url: str, profile: DeviceProfile) -> DeviceResult:
        task = DeviceAnalysisTask(
            self.engine,
            profile,
            config=self.config,
            thresholds=self.thresholds,
            measurement_engine=self.measurement_engine,
        )
        return await task.run(url)

    async def _capture_screenshot(self, url: str, profile: DeviceProfile) -> str:
        return await capture_screenshot(self.engine, url, profile)

    async def _capture_waterfall(self, url: str, profile: DeviceProfile) -> WaterfallTrace:
        return await capture_waterfall(self.engine, url, profile, self.aggregator)

    def _merge(self, job: AnalysisJob) -> AnalysisResult:
        """Combine both device results and the captures into one result."""
        mobile = job.device_results[Device.MOBILE]
        desktop = job.device_results[Device.DESKTOP]

        job.merged_recommendations = merge_recommendations(
            mobile.recommendations, desktop.recommendations
        )

        if job.degraded_artifacts:
            logger.info(f"Analysis of {job.target} missing artifacts: {', '.join(job.degraded_artifacts)}")

        return AnalysisResult(
            url=job.target,
            source=AnalysisSource.BROWSER,
            scores=average_scores(mobile.scores, desktop.scores),
            core_web_vitals={
                Device.MOBILE: mobile.core_web_vitals,
                Device.DESKTOP: desktop.core_web_vitals,
            },
            diagnostics=merge_diagnostics(mobile.diagnostics, desktop.diagnostics),
            recommendations=job.merged_recommendations,
            screenshots=job.screenshots,
            waterfall=job.waterfall,
            degraded_artifacts=sorted(job.degraded_artifacts),
        )

    async def _run_fallback(self, target: str, primary_error: Exception) -> AnalysisResult:
        try:
            report = await self.fallback.analyze(target)
        except Exception as e:
            logger.error(f"Heuristic fallback failed for {target}: {e}")
            raise InternalError(
                f"Analysis failed: {primary_error}; fallback also failed: {e}"
            ) from e

        report.primary_error = str(primary_error)
        return AnalysisResult(
            url=target,
            source=AnalysisSource.HEURISTIC,
            scores=report.scores,
            core_web_vitals={
                Device.MOBILE: CoreWebVitals(),
                Device.DESKTOP: CoreWebVitals(),
            },
            recommendations=report.recommendations,
            technical_checks=report.technical_checks,
            fallback_reason=report.primary_error,
        )
