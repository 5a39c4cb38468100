"""Unit tests for BrowserEngine context handling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pagepulse.infrastructure.browser_engine import (
    COMBINED_STEALTH_SCRIPT,
    BrowserEngine,
)
from pagepulse.models import Device, DeviceProfile


MOBILE = DeviceProfile(
    device=Device.MOBILE,
    viewport_width=375,
    viewport_height=812,
    user_agent="mobile-agent",
    is_mobile=True,
    has_touch=True,
    device_scale_factor=3,
    navigation_timeout_ms=45000,
    capture_timeout_ms=15000,
)


def started_engine():
    """Engine wired to a mocked browser, as if start() had run."""
    engine = BrowserEngine()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=MagicMock(name="page"))
    context.add_init_script = AsyncMock()
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)

    engine._browser = browser
    engine._started = True
    return engine, browser, context


class TestBrowserEngine:
    """Test cases for BrowserEngine."""

    def test_initialization_defaults(self):
        """Test engine initializes stopped and headless."""
        engine = BrowserEngine()
        assert engine.headless is True
        assert engine.is_started is False
        assert engine.open_contexts == 0
        assert "--disable-blink-features=AutomationControlled" in engine.launch_args

    @pytest.mark.asyncio
    async def test_open_before_start_raises(self):
        """Test open() refuses to run before start()."""
        engine = BrowserEngine()
        with pytest.raises(RuntimeError):
            await engine.open(MOBILE)

    @pytest.mark.asyncio
    async def test_open_applies_device_profile(self):
        """Test the context is created with the profile's emulation settings."""
        engine, browser, context = started_engine()

        await engine.open(MOBILE)

        kwargs = browser.new_context.call_args.kwargs
        assert kwargs["viewport"] == {"width": 375, "height": 812}
        assert kwargs["user_agent"] == "mobile-agent"
        assert kwargs["is_mobile"] is True
        assert kwargs["has_touch"] is True
        assert kwargs["device_scale_factor"] == 3
        context.set_default_timeout.assert_called_once_with(45000)
        context.add_init_script.assert_awaited_once_with(COMBINED_STEALTH_SCRIPT)
        assert engine.open_contexts == 1
        assert engine.total_contexts == 1

    @pytest.mark.asyncio
    async def test_acquire_closes_context(self):
        """Test acquire() closes the context after use."""
        engine, _, context = started_engine()

        async with engine.acquire(MOBILE) as (ctx, page):
            assert ctx is context
            assert engine.open_contexts == 1

        context.close.assert_awaited_once()
        assert engine.open_contexts == 0

    @pytest.mark.asyncio
    async def test_acquire_closes_context_on_error(self):
        """Test acquire() closes the context when the body raises."""
        engine, _, context = started_engine()

        with pytest.raises(ValueError):
            async with engine.acquire(MOBILE):
                raise ValueError("navigation failed")

        context.close.assert_awaited_once()
        assert engine.open_contexts == 0

    @pytest.mark.asyncio
    async def test_close_errors_are_logged_only(self):
        """Test a failing context.close() does not propagate."""
        engine, _, context = started_engine()
        context.close.side_effect = RuntimeError("already closed")

        opened = await engine.open(MOBILE)
        await engine.close(opened)

        assert engine.open_contexts == 0

    @pytest.mark.asyncio
    async def test_stop_releases_browser(self):
        """Test stop() closes the browser and playwright."""
        engine, browser, _ = started_engine()
        browser.close = AsyncMock()
        playwright = MagicMock()
        playwright.stop = AsyncMock()
        engine._playwright = playwright

        await engine.stop()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert engine.is_started is False

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        engine = BrowserEngine()
        await engine.stop()
        assert engine.is_started is False

    @pytest.mark.asyncio
    async def test_concurrent_start_launches_once(self):
        """Test simultaneous start() calls share a single browser."""
        launched = []

        async def launch(**kwargs):
            await asyncio.sleep(0.01)
            browser = MagicMock()
            browser.close = AsyncMock()
            launched.append(browser)
            return browser

        playwright = MagicMock()
        playwright.chromium.launch = launch
        playwright.stop = AsyncMock()
        manager = MagicMock()
        manager.start = AsyncMock(return_value=playwright)

        engine = BrowserEngine()
        with patch("playwright.async_api.async_playwright", return_value=manager):
            await asyncio.gather(*(engine.start() for _ in range(5)))

        assert len(launched) == 1
        assert manager.start.await_count == 1
        assert engine.is_started is True

        await engine.stop()
        launched[0].close.assert_awaited_once()
