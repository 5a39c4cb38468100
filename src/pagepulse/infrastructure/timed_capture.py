"""
Timed captures.

Risky artifact captures (screenshots, the waterfall trace) are raced
against a deadline. On timeout the operation's task is cancelled, which
runs its cleanup (closing the browser context), and the caller gets None
instead of an exception.
"""

import asyncio
import base64
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pagepulse.exceptions import CaptureTimeout
from pagepulse.infrastructure.browser_engine import BrowserEngine
from pagepulse.infrastructure.performance_metrics import collect_resource_timings
from pagepulse.models import DeviceProfile, WaterfallTrace
from pagepulse.waterfall import WaterfallAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def race(op: Callable[[], Awaitable[T]], timeout_ms: int, label: str = "capture") -> T:
    """
    Run op with a deadline.

    Raises:
        CaptureTimeout: If op did not finish within timeout_ms. op has been
            cancelled by the time this is raised.
    """
    try:
        return await asyncio.wait_for(op(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as e:
        raise CaptureTimeout(label, timeout_ms) from e


async def with_timeout(
    op: Callable[[], Awaitable[T]],
    timeout_ms: int,
    label: str = "capture",
) -> Optional[T]:
    """
    Run op with a deadline, degrading to None on timeout or failure.

    Args:
        op: Zero-argument coroutine function
        timeout_ms: Time budget in milliseconds
        label: Artifact name used in logs

    Returns:
        op's result, or None if it timed out or raised
    """
    try:
        return await race(op, timeout_ms, label)
    except CaptureTimeout as e:
        logger.warning(f"{e}; continuing without it")
        return None
    except Exception as e:
        logger.warning(f"Capture '{label}' failed: {e}; continuing without it")
        return None


async def capture_screenshot(
    engine: BrowserEngine,
    url: str,
    profile: DeviceProfile,
) -> str:
    """
    Load url in a fresh context and take a viewport screenshot.

    Returns:
        Base64-encoded PNG
    """
    async with engine.acquire(profile) as (_, page):
        await page.goto(
            url,
            wait_until="load",
            timeout=profile.navigation_timeout_ms,
        )
        image = await page.screenshot(type="png", full_page=False)

    logger.debug(f"Captured {profile.name} screenshot ({len(image)} bytes)")
    return base64.b64encode(image).decode("ascii")


async def capture_waterfall(
    engine: BrowserEngine,
    url: str,
    profile: DeviceProfile,
    aggregator: Optional[WaterfallAggregator] = None,
) -> WaterfallTrace:
    """
    Load url in a fresh context and summarize its resource timings.
    """
    aggregator = aggregator or WaterfallAggregator()

    async with engine.acquire(profile) as (_, page):
        await page.goto(
            url,
            wait_until="networkidle",
            timeout=profile.navigation_timeout_ms,
        )
        records = await collect_resource_timings(page)

    summary = aggregator.summarize(records)
    logger.debug(
        f"Waterfall for {url}: {summary.total_resources} resources, "
        f"max parallelism {summary.max_parallelism}"
    )
    return WaterfallTrace(resources=records, summary=summary)
