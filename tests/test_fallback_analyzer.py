"""Tests for the heuristic fallback analyzer."""

import httpx
import pytest
from bs4 import BeautifulSoup

from pagepulse.exceptions import EngineFailure
from pagepulse.fallback_analyzer import (
    HeuristicFallbackAnalyzer,
    TECHNICAL_CHECKS,
    run_technical_checks,
    score_page,
)

TITLE = "Acme Widgets - Handmade widgets shipped worldwide today"
DESCRIPTION = ("Acme builds durable handmade widgets for every workshop. " * 3)[:155]
BODY_TEXT = "Widgets are great. " * 20

RICH_PAGE = "".join([
    '<!DOCTYPE html><html lang="en"><head>',
    '<meta charset="utf-8">',
    '<meta name="viewport" content="width=device-width, initial-scale=1">',
    f'<title>{TITLE}</title>',
    f'<meta name="description" content="{DESCRIPTION}">',
    '<link rel="canonical" href="https://acme.example/">',
    '<meta property="og:title" content="Acme Widgets">',
    '<meta property="og:description" content="Handmade widgets">',
    '<meta property="og:image" content="https://acme.example/og.png">',
    '<meta property="og:url" content="https://acme.example/">',
    '<meta name="twitter:card" content="summary_large_image">',
    '<script type="application/ld+json">{"@type": "Organization"}</script>',
    '<link rel="stylesheet" href="/site.css">',
    '</head><body>',
    '<h1>Acme Widgets</h1><h2>Our range</h2>',
    '<img src="/w.png" srcset="/w.png 1x, /w@2x.png 2x" alt="A widget" width="400" height="300">',
    f'<p>{BODY_TEXT}</p>',
    '<a href="/about">About us</a>',
    '</body></html>',
])

BARE_PAGE = "<html><head><title>Hi</title></head><body><p>x</p></body></html>"


def analyzer_for(handler) -> HeuristicFallbackAnalyzer:
    return HeuristicFallbackAnalyzer(timeout=5, transport=httpx.MockTransport(handler))


def html_response(html: str, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=html, headers={"Content-Type": "text/html"})
    return handler


class TestRunTechnicalChecks:
    """Tests for run_technical_checks."""

    def test_rich_page_passes_every_check(self):
        soup = BeautifulSoup(RICH_PAGE, "html.parser")
        checks = run_technical_checks(soup, RICH_PAGE, "https://acme.example/")

        failing = [check.key for check in TECHNICAL_CHECKS if not checks[check.key]]
        assert failing == []
        assert checks["hasOpenGraph"] and checks["hasTwitterCards"] and checks["hasOGImage"]

    def test_inline_styles_detected(self):
        html = '<html><body><p style="color:red">x</p></body></html>'
        checks = run_technical_checks(BeautifulSoup(html, "html.parser"), html, "https://a.example/")
        assert checks["noInlineStyles"] is False

    def test_images_without_alt(self):
        html = '<html><body><img src="a.png"><img src="b.png"><img src="c.png" alt="c"></body></html>'
        checks = run_technical_checks(BeautifulSoup(html, "html.parser"), html, "https://a.example/")
        assert checks["imagesHaveAltText"] is False
        assert checks["imagesHaveDimensions"] is False

    def test_unminified_html(self):
        html = "<html>\n\n    <body>\n\n        <p>x</p>\n\n    </body>\n\n</html>"
        checks = run_technical_checks(BeautifulSoup(html, "html.parser"), html, "https://a.example/")
        assert checks["minifiedHTML"] is False

    def test_internal_links_match_hostname(self):
        html = '<html><body><a href="https://a.example/pricing">Pricing</a></body></html>'
        checks = run_technical_checks(BeautifulSoup(html, "html.parser"), html, "https://a.example/")
        assert checks["hasInternalLinks"] is True


class TestScorePage:
    """Tests for score_page."""

    def test_incomplete_open_graph_gets_partial_credit(self):
        checks = {check.key: True for check in TECHNICAL_CHECKS}
        scores, recommendations = score_page(
            TITLE, DESCRIPTION, {"og:title": "Acme"}, {"twitter:card": "summary"}, checks
        )
        # 15 + 15 + 10 + 15 + 32 technical points
        assert scores.seo == 87
        assert [r.title for r in recommendations] == ["Incomplete Open Graph Tags"]

    def test_seo_capped_at_100(self):
        checks = {check.key: True for check in TECHNICAL_CHECKS}
        og = {tag: "x" for tag in ("og:title", "og:description", "og:image", "og:url")}
        scores, _ = score_page(TITLE, DESCRIPTION, og, {"twitter:card": "summary"}, checks)
        assert scores.seo <= 100

    def test_acceptable_title_length(self):
        checks = {check.key: True for check in TECHNICAL_CHECKS}
        _, recommendations = score_page("A" * 40, DESCRIPTION, {}, {}, checks)
        titles = [r.title for r in recommendations]
        assert "Optimize Title Tag Length" in titles

    def test_failed_check_recommendations(self):
        checks = {check.key: True for check in TECHNICAL_CHECKS}
        checks["hasSSL"] = False
        checks["noInlineStyles"] = False

        _, recommendations = score_page(TITLE, DESCRIPTION, {}, {}, checks)

        by_title = {r.title: r for r in recommendations}
        assert by_title["Missing: HTTPS/SSL Security"].type == "error"
        assert by_title["Missing: HTTPS/SSL Security"].priority == "high"
        assert by_title["Improve: External Stylesheets"].type == "warning"
        assert by_title["Improve: External Stylesheets"].category == "best_practices"


class TestHeuristicFallbackAnalyzer:
    """Tests for HeuristicFallbackAnalyzer.analyze."""

    @pytest.mark.asyncio
    async def test_rich_page(self):
        report = await analyzer_for(html_response(RICH_PAGE)).analyze("https://acme.example/")

        assert report.status_code == 200
        assert report.title == TITLE
        assert report.description == DESCRIPTION
        assert report.scores.performance is None
        assert report.scores.seo == 97
        assert report.scores.accessibility == 100
        assert report.scores.best_practices == 100
        assert not [r for r in report.recommendations if r.type == "error"]

    @pytest.mark.asyncio
    async def test_bare_http_page(self):
        report = await analyzer_for(html_response(BARE_PAGE)).analyze("http://bare.example/")

        assert report.technical_checks["hasSSL"] is False
        assert report.scores.accessibility == 36
        assert report.scores.best_practices == 29
        assert report.scores.seo == 5
        titles = [r.title for r in report.recommendations]
        assert "Fix Title Tag Length" in titles
        assert "Missing Meta Description" in titles
        assert "Missing: HTTPS/SSL Security" in titles

    @pytest.mark.asyncio
    async def test_checks_use_final_url_after_redirect(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.scheme == "http":
                return httpx.Response(301, headers={"Location": "https://acme.example/"})
            return httpx.Response(200, text=RICH_PAGE)

        report = await analyzer_for(handler).analyze("http://acme.example/")

        assert report.url == "http://acme.example/"
        assert report.technical_checks["hasSSL"] is True

    @pytest.mark.asyncio
    async def test_error_status_raises_engine_failure(self):
        with pytest.raises(EngineFailure):
            await analyzer_for(html_response("oops", status=500)).analyze("https://acme.example/")

    @pytest.mark.asyncio
    async def test_connection_error_raises_engine_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EngineFailure) as exc_info:
            await analyzer_for(handler).analyze("https://down.example/")

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_raises_engine_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(EngineFailure) as exc_info:
            await analyzer_for(handler).analyze("https://slow.example/")

        assert "timeout" in str(exc_info.value)
