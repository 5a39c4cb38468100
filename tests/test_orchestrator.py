"""Tests for the analysis orchestrator."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from pagepulse.config import OrchestratorConfig, PerformanceThresholds
from pagepulse.exceptions import (
    EngineFailure,
    InternalError,
    RateLimited,
    SiteProtectionActive,
)
from pagepulse.models import (
    AnalysisSource,
    CategoryScores,
    CoreWebVitals,
    Device,
    DeviceResult,
    HeuristicReport,
    Recommendation,
    ResourceTimingRecord,
    WaterfallSummary,
    WaterfallTrace,
)
from pagepulse.orchestrator import Orchestrator

URL = "https://example.com"


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def device_result(device: Device, performance: int, seo: int = 90) -> DeviceResult:
    return DeviceResult(
        device=device,
        url=URL,
        final_url=URL + "/",
        status_code=200,
        scores=CategoryScores(performance=performance, accessibility=100, best_practices=95, seo=seo),
        core_web_vitals=CoreWebVitals(lcp=2000.0 if device is Device.MOBILE else 1200.0, cls=0.02),
        recommendations=[
            Recommendation(
                category="performance",
                title=f"Improve Largest Contentful Paint on {device.value}",
                description=f"Largest Contentful Paint is slow on {device.value}.",
            ),
        ],
    )


def waterfall_trace() -> WaterfallTrace:
    record = ResourceTimingRecord(url=URL, type="document", size_bytes=1000, start_time=0, end_time=100)
    summary = WaterfallSummary(
        total_resources=1, total_size=1000, total_duration=100, render_blocking_count=0,
        critical_count=1, max_parallelism=1, cache_hit_rate=0.0, compression_savings_pct=80.0,
    )
    return WaterfallTrace(resources=[record], summary=summary)


def heuristic_report(url: str = URL) -> HeuristicReport:
    return HeuristicReport(
        url=url,
        status_code=200,
        title="Example",
        description=None,
        scores=CategoryScores(performance=None, accessibility=80, best_practices=70, seo=45),
        technical_checks={"hasSSL": True},
        recommendations=[Recommendation(category="seo", title="Missing Meta Description", description="...")],
    )


class ScriptedOrchestrator(Orchestrator):
    """Orchestrator whose browser work is replaced by scripted outcomes."""

    def __init__(self, outcomes=None, capture_delay=0.0, **kwargs):
        super().__init__(**kwargs)
        self.outcomes = outcomes or {}
        self.capture_delay = capture_delay
        self.device_calls = []

    async def _run_device_task(self, url, profile):
        self.device_calls.append(profile.device)
        outcome = self.outcomes.get(profile.device, device_result(profile.device, 80))
        if callable(outcome):
            return await outcome()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def _capture_screenshot(self, url, profile):
        await asyncio.sleep(self.capture_delay)
        return f"{profile.name}-png"

    async def _capture_waterfall(self, url, profile):
        return waterfall_trace()


def fake_engine():
    engine = Mock()
    engine.start = AsyncMock()
    engine.stop = AsyncMock()
    return engine


def fake_fallback(report=None, error=None):
    fallback = Mock()
    fallback.analyze = AsyncMock(return_value=report or heuristic_report(), side_effect=error)
    return fallback


def make_orchestrator(outcomes=None, fallback=None, engine=None, clock=None, capture_delay=0.0, **config):
    config.setdefault("use_lighthouse", False)
    return ScriptedOrchestrator(
        outcomes=outcomes,
        capture_delay=capture_delay,
        config=OrchestratorConfig(**config),
        engine=engine or fake_engine(),
        fallback=fallback or fake_fallback(),
        thresholds=PerformanceThresholds(),
        clock=clock or FakeClock(),
    )


class TestOrchestratorPrimaryPath:
    """Tests for the browser pipeline."""

    @pytest.mark.asyncio
    async def test_merges_device_results(self):
        orchestrator = make_orchestrator({
            Device.MOBILE: device_result(Device.MOBILE, 90, seo=91),
            Device.DESKTOP: device_result(Device.DESKTOP, 85, seo=92),
        })

        result = await orchestrator.analyze(URL)

        assert result.source is AnalysisSource.BROWSER
        assert result.is_partial is False
        assert result.scores.performance == 88
        assert result.scores.seo == 92
        assert result.core_web_vitals[Device.MOBILE].lcp == 2000.0
        assert result.core_web_vitals[Device.DESKTOP].lcp == 1200.0
        assert result.screenshots.mobile == "mobile-png"
        assert result.screenshots.desktop == "desktop-png"
        assert result.waterfall.summary.total_resources == 1
        assert result.degraded_artifacts == []
        assert result.fallback_reason is None

        assert len(result.recommendations) == 1
        merged = result.recommendations[0]
        assert merged.title == "Improve Largest Contentful Paint"
        assert "mobile and desktop" in merged.description

        orchestrator.engine.start.assert_awaited_once()
        orchestrator.fallback.analyze.assert_not_awaited()
        assert sorted(d.value for d in orchestrator.device_calls) == ["desktop", "mobile"]

    @pytest.mark.asyncio
    async def test_capture_timeout_degrades_artifact(self):
        orchestrator = make_orchestrator(
            capture_delay=0.05,
            mobile_capture_timeout_ms=10,
            desktop_capture_timeout_ms=5000,
        )

        result = await orchestrator.analyze(URL)

        assert result.source is AnalysisSource.BROWSER
        assert result.screenshots.mobile is None
        assert result.screenshots.desktop == "desktop-png"
        assert result.degraded_artifacts == ["screenshot_mobile"]
        assert result.is_partial is True

    @pytest.mark.asyncio
    async def test_failed_waterfall_degrades(self):
        orchestrator = make_orchestrator()

        async def broken_waterfall(url, profile):
            raise RuntimeError("Target closed")

        orchestrator._capture_waterfall = broken_waterfall

        result = await orchestrator.analyze(URL)

        assert result.waterfall is None
        assert result.degraded_artifacts == ["waterfall"]

    @pytest.mark.asyncio
    async def test_history_stored(self):
        orchestrator = make_orchestrator()

        result = await orchestrator.analyze(URL)

        assert orchestrator.history.history_for(URL) == [result]


class TestOrchestratorFailures:
    """Tests for fallback and error propagation."""

    @pytest.mark.asyncio
    async def test_engine_failure_uses_fallback(self):
        fallback = fake_fallback()
        orchestrator = make_orchestrator(
            {Device.MOBILE: EngineFailure("mobile analysis failed: net::ERR_TIMED_OUT", device="mobile")},
            fallback=fallback,
        )

        result = await orchestrator.analyze(URL)

        fallback.analyze.assert_awaited_once_with(URL)
        assert result.source is AnalysisSource.HEURISTIC
        assert result.is_partial is True
        assert result.scores.performance is None
        assert result.scores.seo == 45
        assert result.core_web_vitals[Device.MOBILE].is_empty()
        assert result.core_web_vitals[Device.DESKTOP].is_empty()
        assert "ERR_TIMED_OUT" in result.fallback_reason
        assert result.technical_checks == {"hasSSL": True}
        assert result.screenshots.mobile is None
        assert result.waterfall is None

    @pytest.mark.asyncio
    async def test_browser_start_failure_uses_fallback(self):
        engine = fake_engine()
        engine.start.side_effect = ImportError("playwright package not installed")
        orchestrator = make_orchestrator(engine=engine)

        result = await orchestrator.analyze(URL)

        assert result.source is AnalysisSource.HEURISTIC
        assert orchestrator.device_calls == []

    @pytest.mark.asyncio
    async def test_site_protection_never_falls_back(self):
        fallback = fake_fallback()
        orchestrator = make_orchestrator(
            {Device.DESKTOP: SiteProtectionActive("wall", challenge_type="title:just a moment", device="desktop")},
            fallback=fallback,
        )

        with pytest.raises(SiteProtectionActive) as exc_info:
            await orchestrator.analyze(URL)

        assert exc_info.value.device == "desktop"
        fallback.analyze.assert_not_awaited()
        assert orchestrator.history.history_for(URL) == []

    @pytest.mark.asyncio
    async def test_site_protection_preferred_over_other_errors(self):
        fallback = fake_fallback()
        orchestrator = make_orchestrator(
            {
                Device.MOBILE: EngineFailure("boom", device="mobile"),
                Device.DESKTOP: SiteProtectionActive("wall", device="desktop"),
            },
            fallback=fallback,
        )

        with pytest.raises(SiteProtectionActive):
            await orchestrator.analyze(URL)

        fallback.analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_late_site_protection_outranks_earlier_failure(self):
        fallback = fake_fallback()

        async def walled_desktop():
            await asyncio.sleep(0.05)
            raise SiteProtectionActive("wall", challenge_type="title:just a moment", device="desktop")

        orchestrator = make_orchestrator(
            {
                Device.MOBILE: EngineFailure("boom", device="mobile"),
                Device.DESKTOP: walled_desktop,
            },
            fallback=fallback,
        )

        with pytest.raises(SiteProtectionActive) as exc_info:
            await orchestrator.analyze(URL)

        assert exc_info.value.device == "desktop"
        fallback.analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_device_failure_cancels_captures(self):
        async def slow_desktop():
            await asyncio.sleep(0.05)
            return device_result(Device.DESKTOP, 90)

        orchestrator = make_orchestrator(
            {
                Device.MOBILE: EngineFailure("crashed", device="mobile"),
                Device.DESKTOP: slow_desktop,
            },
            capture_delay=10,
        )

        result = await asyncio.wait_for(orchestrator.analyze(URL), timeout=2)

        assert result.source is AnalysisSource.HEURISTIC
        assert "crashed" in result.fallback_reason

    @pytest.mark.asyncio
    async def test_site_protection_cancels_sibling(self):
        sibling_cancelled = asyncio.Event()

        async def slow_desktop():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                sibling_cancelled.set()
                raise

        orchestrator = make_orchestrator({
            Device.MOBILE: SiteProtectionActive("wall", device="mobile"),
            Device.DESKTOP: slow_desktop,
        })

        with pytest.raises(SiteProtectionActive):
            await asyncio.wait_for(orchestrator.analyze(URL), timeout=2)

        assert sibling_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_fallback_failure_is_internal_error(self):
        orchestrator = make_orchestrator(
            {Device.MOBILE: EngineFailure("crashed", device="mobile")},
            fallback=fake_fallback(error=EngineFailure("Failed to fetch website content: 503")),
        )

        with pytest.raises(InternalError) as exc_info:
            await orchestrator.analyze(URL)

        assert "crashed" in exc_info.value.message
        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal_error(self):
        orchestrator = make_orchestrator()
        orchestrator.history = Mock()
        orchestrator.history.store.side_effect = RuntimeError("disk full")

        with pytest.raises(InternalError) as exc_info:
            await orchestrator.analyze(URL)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert orchestrator.queue.active == 0


class TestOrchestratorAdmission:
    """Tests for admission control and queueing through analyze()."""

    @pytest.mark.asyncio
    async def test_second_request_is_rate_limited(self):
        clock = FakeClock(100.0)
        orchestrator = make_orchestrator(clock=clock)

        await orchestrator.analyze(URL)
        clock.now = 110.0

        with pytest.raises(RateLimited) as exc_info:
            await orchestrator.analyze(URL + "/?ref=home")

        assert exc_info.value.retry_after_seconds == 20

    @pytest.mark.asyncio
    async def test_cooldown_applies_after_fallback(self):
        clock = FakeClock()
        orchestrator = make_orchestrator({Device.MOBILE: EngineFailure("x", device="mobile")}, clock=clock)

        await orchestrator.analyze(URL)

        with pytest.raises(RateLimited):
            await orchestrator.analyze(URL)

    @pytest.mark.asyncio
    async def test_queue_position_and_status(self):
        gate = asyncio.Event()

        async def gated():
            await gate.wait()
            return device_result(Device.MOBILE, 80)

        orchestrator = make_orchestrator({Device.MOBILE: gated}, max_concurrent_analyses=1)

        first = asyncio.create_task(orchestrator.analyze("https://one.example"))
        for _ in range(5):
            await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.analyze("https://two.example"))
        for _ in range(5):
            await asyncio.sleep(0)

        assert orchestrator.position_of("https://two.example/") == 1
        assert orchestrator.position_of("https://one.example") == 0
        status = orchestrator.status()
        assert (status.active, status.queued, status.ceiling) == (1, 1, 1)

        gate.set()
        results = await asyncio.gather(first, second)

        assert [r.url for r in results] == ["https://one.example", "https://two.example"]
        assert orchestrator.status().active == 0

    @pytest.mark.asyncio
    async def test_context_manager_stops_engine(self):
        engine = fake_engine()

        async with make_orchestrator(engine=engine) as orchestrator:
            assert orchestrator.admission._sweep_task is not None

        engine.stop.assert_awaited_once()
        assert orchestrator.admission._sweep_task is None
