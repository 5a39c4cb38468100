"""
Browser Engine.

Owns a single Playwright Chromium instance and hands out fresh, isolated
browser contexts per device profile. Every context gets the stealth init
script so automation markers are hidden before any page script runs.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from pagepulse.models import DeviceProfile

logger = logging.getLogger(__name__)


# Stealth JavaScript injected into every context.
# These scripts hide automation signals that bot detectors check for.
STEALTH_SCRIPTS = {
    "webdriver": """
        // Hide navigator.webdriver
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
            configurable: true
        });
    """,
    "plugins": """
        // Add realistic plugins array
        Object.defineProperty(navigator, 'plugins', {
            get: () => {
                const plugins = [
                    { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
                    { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
                    { name: 'Native Client', filename: 'internal-nacl-plugin' }
                ];
                plugins.item = (index) => plugins[index];
                plugins.namedItem = (name) => plugins.find(p => p.name === name);
                plugins.refresh = () => {};
                return plugins;
            },
            configurable: true
        });
    """,
    "languages": """
        Object.defineProperty(navigator, 'languages', {
            get: () => ['en-US', 'en'],
            configurable: true
        });
    """,
    "chrome_runtime": """
        if (!window.chrome) {
            window.chrome = {};
        }
        if (!window.chrome.runtime) {
            window.chrome.runtime = {
                id: undefined,
                connect: function() {},
                sendMessage: function() {},
                onMessage: { addListener: function() {} },
                onConnect: { addListener: function() {} }
            };
        }
    """,
    "permissions": """
        if (window.navigator.permissions) {
            const originalQuery = window.navigator.permissions.query;
            window.navigator.permissions.query = (parameters) => (
                parameters.name === 'notifications' ?
                    Promise.resolve({ state: Notification.permission }) :
                    originalQuery(parameters)
            );
        }
    """,
    "automation_globals": """
        // Remove ChromeDriver/CDP leftovers
        for (const key of Object.keys(window)) {
            if (key.startsWith('cdc_') || key.startsWith('$cdc_')) {
                delete window[key];
            }
        }
    """,
}

COMBINED_STEALTH_SCRIPT = "\n".join(STEALTH_SCRIPTS.values())

# Chromium flags that drop the most obvious automation fingerprints
DEFAULT_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


class BrowserEngine:
    """
    Playwright-backed browser automation engine.

    Features:
    - One shared browser, one fresh context per unit of work
    - Device emulation (viewport, user agent, touch, scale factor)
    - Automation-signal masking through init scripts
    - Context accounting so leaks are observable
    """

    def __init__(
        self,
        headless: bool = True,
        launch_args: Optional[list[str]] = None,
        locale: str = "en-US",
    ):
        """
        Initialize browser engine.

        Args:
            headless: Run the browser headless
            launch_args: Chromium command-line flags
            locale: Locale reported by every context
        """
        self.headless = headless
        self.launch_args = launch_args if launch_args is not None else list(DEFAULT_LAUNCH_ARGS)
        self.locale = locale

        self._playwright = None
        self._browser = None
        self._started = False
        self._lock = asyncio.Lock()
        self._start_time: datetime | None = None
        self._open_contexts = 0
        self._total_contexts = 0

    async def start(self) -> None:
        """Launch the browser."""
        if self._started:
            return

        try:
            from playwright.async_api import async_playwright
        except ImportError:
            raise ImportError(
                "playwright package not installed. "
                "Install with: pip install playwright && playwright install chromium"
            )

        async with self._lock:
            if self._started:
                return

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
            )
            self._start_time = datetime.now()
            self._started = True
            logger.info(f"Browser engine started (headless={self.headless})")

    async def stop(self) -> None:
        """Close the browser and stop Playwright."""
        if not self._started:
            return

        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

        self._started = False
        logger.info("Browser engine stopped")

    async def open(self, profile: DeviceProfile) -> Any:
        """
        Open a fresh browsing context for a device profile.

        Args:
            profile: Device emulation settings

        Returns:
            Playwright BrowserContext with stealth scripts installed
        """
        if not self._started:
            raise RuntimeError("Browser engine not started. Call start() first.")

        context = await self._browser.new_context(
            viewport=profile.viewport,
            user_agent=profile.user_agent,
            is_mobile=profile.is_mobile,
            has_touch=profile.has_touch,
            device_scale_factor=profile.device_scale_factor,
            locale=self.locale,
            ignore_https_errors=True,
            java_script_enabled=True,
        )
        context.set_default_timeout(profile.navigation_timeout_ms)
        await context.add_init_script(COMBINED_STEALTH_SCRIPT)

        self._open_contexts += 1
        self._total_contexts += 1
        logger.debug(f"Opened {profile.name} context ({self._open_contexts} open)")
        return context

    async def close(self, context: Any) -> None:
        """Close a context opened by this engine; errors are logged only."""
        try:
            await context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")
        finally:
            self._open_contexts -= 1

    @asynccontextmanager
    async def acquire(self, profile: DeviceProfile):
        """
        Open a context and page, closing both on exit.

        Usage:
            async with engine.acquire(profile) as (context, page):
                await page.goto(url)

        Cancellation of the enclosing task still runs the cleanup, so a
        timed-out capture releases its browser resources.

        Yields:
            Tuple of (BrowserContext, Page)
        """
        context = await self.open(profile)
        try:
            page = await context.new_page()
            yield context, page
        finally:
            await self.close(context)

    @property
    def open_contexts(self) -> int:
        """Number of contexts currently open."""
        return self._open_contexts

    @property
    def total_contexts(self) -> int:
        return self._total_contexts

    @property
    def is_started(self) -> bool:
        """Whether the browser has been launched."""
        return self._started
