"""Unit tests for challenge wall detection."""

import pytest

from pagepulse.exceptions import SiteProtectionActive
from pagepulse.utils.challenge_handler import (
    BODY_SAMPLE_SCRIPT,
    detect_challenge,
    is_challenge_page,
    wait_for_challenge_resolution,
)


class FakeLocator:
    def __init__(self, count):
        self._count = count

    async def count(self):
        return self._count


class FakePage:
    """Page whose title/body can change between checks."""

    def __init__(self, titles=("Example Domain",), body="Hello world", url="https://example.com/", selectors=()):
        self._titles = list(titles)
        self.body = body
        self.url = url
        self.selectors = set(selectors)
        self.title_calls = 0

    async def title(self):
        self.title_calls += 1
        if len(self._titles) > 1:
            return self._titles.pop(0)
        return self._titles[0]

    async def evaluate(self, script, arg=None):
        assert script == BODY_SAMPLE_SCRIPT
        return self.body[:arg]

    def locator(self, selector):
        return FakeLocator(1 if selector in self.selectors else 0)


class TestDetectChallenge:
    """Tests for detect_challenge."""

    @pytest.mark.asyncio
    async def test_regular_page(self):
        page = FakePage()
        assert await detect_challenge(page) is None
        assert not await is_challenge_page(page)

    @pytest.mark.asyncio
    async def test_title_marker(self):
        page = FakePage(titles=("Just a moment...",))
        assert await detect_challenge(page) == "title:just a moment"

    @pytest.mark.asyncio
    async def test_body_marker(self):
        page = FakePage(body="Please VERIFY YOU ARE HUMAN by completing the action below")
        assert await detect_challenge(page) == "body:verify you are human"

    @pytest.mark.asyncio
    async def test_url_pattern(self):
        page = FakePage(url="https://example.com/cdn-cgi/challenge-platform/h/b")
        assert await detect_challenge(page) == "url_pattern:/cdn-cgi/challenge-platform"

    @pytest.mark.asyncio
    async def test_article_url_mentioning_captcha(self):
        page = FakePage(url="https://example.com/blog/captcha-alternatives")
        assert await detect_challenge(page) is None

    @pytest.mark.asyncio
    async def test_security_check_path_without_markers(self):
        page = FakePage(url="https://example.com/docs/security-check-guide")
        assert await detect_challenge(page) is None

    @pytest.mark.asyncio
    async def test_selector_indicator(self):
        page = FakePage(selectors=("iframe[src*='challenges.cloudflare']",))
        assert await detect_challenge(page) == "cloudflare_turnstile"

    @pytest.mark.asyncio
    async def test_marker_beyond_sample_is_ignored(self):
        page = FakePage(body="x" * 6000 + " captcha")
        assert await detect_challenge(page) is None

    @pytest.mark.asyncio
    async def test_evaluation_errors_are_skipped(self):
        class NavigatingPage(FakePage):
            async def title(self):
                raise RuntimeError("Execution context was destroyed")

        assert await detect_challenge(NavigatingPage()) is None


class TestWaitForChallengeResolution:
    """Tests for wait_for_challenge_resolution."""

    @pytest.mark.asyncio
    async def test_no_challenge_returns_immediately(self):
        page = FakePage()
        assert await wait_for_challenge_resolution(page, max_wait=1, poll_interval=0.01) == 0.0
        assert page.title_calls == 1

    @pytest.mark.asyncio
    async def test_challenge_that_clears(self):
        page = FakePage(titles=("Just a moment...", "Just a moment...", "Example Domain"))

        waited = await wait_for_challenge_resolution(page, max_wait=1, poll_interval=0.01)

        assert 0 < waited < 1

    @pytest.mark.asyncio
    async def test_persistent_challenge_raises(self):
        page = FakePage(titles=("Attention Required! | Cloudflare",))

        with pytest.raises(SiteProtectionActive) as exc_info:
            await wait_for_challenge_resolution(page, max_wait=0.05, poll_interval=0.01, device="mobile")

        error = exc_info.value
        assert error.challenge_type == "title:attention required"
        assert error.device == "mobile"
        assert error.to_dict()["type"] == "SITE_PROTECTION_ACTIVE"
        assert "remediation" in error.to_dict()
