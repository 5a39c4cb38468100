"""
Challenge wall detection.

Detects bot-verification interstitials (Cloudflare, Akamai, hCaptcha,
reCAPTCHA and generic "verify you are human" pages) by inspecting the page
title, a sample of the body text and a handful of well-known selectors.
Many of these walls clear themselves after a JavaScript check, so callers
get a bounded wait before the wall is reported as SiteProtectionActive.
"""

import asyncio
import logging
import time
from typing import Optional

from pagepulse.constants import (
    CHALLENGE_BODY_MARKERS,
    CHALLENGE_BODY_SAMPLE_CHARS,
    CHALLENGE_POLL_INTERVAL_SECONDS,
    CHALLENGE_TITLE_MARKERS,
    CHALLENGE_WAIT_SECONDS,
)
from pagepulse.exceptions import SiteProtectionActive

logger = logging.getLogger(__name__)


# =============================================================================
# Challenge Detection Selectors
# =============================================================================

CHALLENGE_INDICATORS = {
    # reCAPTCHA
    "recaptcha_challenge": ".recaptcha-challenge, #rc-imageselect",

    # hCaptcha
    "hcaptcha_iframe": "iframe[src*='hcaptcha']",

    # Akamai Bot Manager
    "akamai_challenge": "#sec-cpt-if, #ak-challenge",

    # Cloudflare
    "cloudflare_challenge": "#cf-challenge-running, .cf-browser-verification",
    "cloudflare_turnstile": "iframe[src*='challenges.cloudflare']",
}

# Paths served only by challenge interstitials. Bare words such as
# "captcha" are left to the title and body markers.
CHALLENGE_URL_PATTERNS = [
    "/cdn-cgi/challenge-platform",
    "/cdn-cgi/l/chk_captcha",
    "/_incapsula_resource",
]

BODY_SAMPLE_SCRIPT = """
(limit) => {
    const body = document.body;
    return body ? (body.innerText || '').slice(0, limit) : '';
}
"""


async def detect_challenge(page) -> Optional[str]:
    """
    Detect if the current page is a CAPTCHA or bot challenge.

    Args:
        page: Async Playwright Page instance

    Returns:
        Name of detected challenge type, or None if no challenge found
    """
    current_url = (page.url or "").lower()
    for pattern in CHALLENGE_URL_PATTERNS:
        if pattern in current_url:
            return f"url_pattern:{pattern}"

    # The page may still be navigating away from an interstitial, in which
    # case evaluation fails and that check is skipped.
    try:
        title = (await page.title() or "").lower()
    except Exception:
        title = ""
    for marker in CHALLENGE_TITLE_MARKERS:
        if marker in title:
            return f"title:{marker}"

    try:
        body = (await page.evaluate(BODY_SAMPLE_SCRIPT, CHALLENGE_BODY_SAMPLE_CHARS) or "").lower()
    except Exception:
        body = ""
    for marker in CHALLENGE_BODY_MARKERS:
        if marker in body:
            return f"body:{marker}"

    for name, selector in CHALLENGE_INDICATORS.items():
        try:
            if await page.locator(selector).count() > 0:
                return name
        except Exception:
            continue

    return None


async def is_challenge_page(page) -> bool:
    """Check if current page has any challenge."""
    return await detect_challenge(page) is not None


async def wait_for_challenge_resolution(
    page,
    max_wait: float = CHALLENGE_WAIT_SECONDS,
    poll_interval: float = CHALLENGE_POLL_INTERVAL_SECONDS,
    device: Optional[str] = None,
) -> float:
    """
    Wait out a challenge wall if one is showing.

    Args:
        page: Async Playwright Page instance
        max_wait: Seconds to wait for the wall to clear
        poll_interval: Seconds between re-checks
        device: Device name reported on failure

    Returns:
        Seconds spent waiting (0.0 when there was no challenge)

    Raises:
        SiteProtectionActive: If the challenge is still present after max_wait
    """
    challenge = await detect_challenge(page)
    if challenge is None:
        return 0.0

    logger.info(f"Challenge detected ({challenge}), waiting up to {max_wait:.0f}s for it to clear")

    started = time.monotonic()
    deadline = started + max_wait
    while time.monotonic() < deadline:
        await asyncio.sleep(poll_interval)
        challenge_now = await detect_challenge(page)
        if challenge_now is None:
            waited = time.monotonic() - started
            logger.info(f"Challenge cleared after {waited:.1f}s")
            return waited
        challenge = challenge_now

    logger.warning(f"Challenge still present after {max_wait:.0f}s: {challenge}")
    raise SiteProtectionActive(
        f"Bot-verification wall did not clear within {max_wait:.0f}s ({challenge})",
        challenge_type=challenge,
        device=device,
    )
