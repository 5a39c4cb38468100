"""Tests for the command-line interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from pagepulse.cli import main, print_result
from pagepulse.exceptions import RateLimited, SiteProtectionActive
from pagepulse.models import (
    AnalysisResult,
    AnalysisSource,
    CategoryScores,
    CoreWebVitals,
    Device,
    Recommendation,
)


def make_result(url="https://example.com", source=AnalysisSource.BROWSER):
    return AnalysisResult(
        url=url,
        source=source,
        scores=CategoryScores(performance=88, accessibility=100, best_practices=95, seo=92),
        core_web_vitals={
            Device.MOBILE: CoreWebVitals(lcp=2000, cls=0.02),
            Device.DESKTOP: CoreWebVitals(),
        },
        recommendations=[
            Recommendation(category="seo", title="Fix Canonical URL", description="No canonical link is declared."),
        ],
        fallback_reason="browser crashed" if source is AnalysisSource.HEURISTIC else None,
    )


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("pagepulse.cli.setup_logging"):
        yield


class TestPrintResult:
    """Tests for print_result."""

    def test_prints_scores_and_recommendations(self, capsys):
        print_result(make_result())
        out = capsys.readouterr().out

        assert "Page Analysis for: https://example.com" in out
        assert "Performance: 88" in out
        assert "Best Practices: 95" in out
        assert "Core Web Vitals (mobile)" in out
        assert "Core Web Vitals (desktop)" not in out
        assert "Fix Canonical URL" in out

    def test_heuristic_notice(self, capsys):
        print_result(make_result(source=AnalysisSource.HEURISTIC))
        out = capsys.readouterr().out
        assert "heuristic" in out
        assert "browser crashed" in out


class TestAnalyzeCommand:
    """Tests for the analyze subcommand."""

    def test_json_output(self, capsys):
        outcomes = [("https://example.com", make_result())]
        with patch("pagepulse.cli._analyze_all", AsyncMock(return_value=outcomes)) as analyze_all:
            main(["analyze", "https://example.com", "--output", "json", "--no-lighthouse"])

        data = json.loads(capsys.readouterr().out)
        assert data["https://example.com"]["scores"]["performance"] == 88
        config = analyze_all.call_args.args[1]
        assert config.use_lighthouse is False

    def test_overrides_applied(self):
        outcomes = [("https://example.com", make_result())]
        with patch("pagepulse.cli._analyze_all", AsyncMock(return_value=outcomes)) as analyze_all:
            main(["analyze", "https://example.com", "--headed", "--max-concurrent", "3"])

        urls, config = analyze_all.call_args.args
        assert urls == ["https://example.com"]
        assert config.headless is False
        assert config.max_concurrent_analyses == 3

    def test_json_output_file(self, tmp_path):
        target = tmp_path / "out.json"
        outcomes = [("https://example.com", make_result())]
        with patch("pagepulse.cli._analyze_all", AsyncMock(return_value=outcomes)):
            main(["analyze", "https://example.com", "-o", "json", "-f", str(target)])

        assert json.loads(target.read_text())["https://example.com"]["source"] == "browser"

    def test_errors_exit_nonzero(self, capsys):
        outcomes = [
            ("https://example.com", make_result()),
            ("https://limited.example", RateLimited(25)),
            ("https://walled.example", SiteProtectionActive("wall", device="mobile")),
            ("https://broken.example", RuntimeError("unexpected")),
        ]
        with patch("pagepulse.cli._analyze_all", AsyncMock(return_value=outcomes)):
            with pytest.raises(SystemExit) as exc_info:
                main(["analyze", "https://example.com", "--output", "json"])

        assert exc_info.value.code == 1
        data = json.loads(capsys.readouterr().out)
        assert data["https://limited.example"]["error"]["retry_after_seconds"] == 25
        assert data["https://walled.example"]["error"]["type"] == "SITE_PROTECTION_ACTIVE"
        assert data["https://broken.example"]["error"]["type"] == "INTERNAL_ERROR"

    def test_text_errors_go_to_stderr(self, capsys):
        outcomes = [("https://limited.example", RateLimited(25))]
        with patch("pagepulse.cli._analyze_all", AsyncMock(return_value=outcomes)):
            with pytest.raises(SystemExit):
                main(["analyze", "https://limited.example"])

        err = capsys.readouterr().err
        assert "Rate limited" in err

    def test_no_command_prints_help(self, capsys):
        main([])
        assert "analyze" in capsys.readouterr().out
