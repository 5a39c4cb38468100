"""
Category scoring from browser measurements.

Performance is scored from Core Web Vitals against PerformanceThresholds;
accessibility, best practices and SEO are scored from DOM signals read off
the live page. Failing metrics and checks become diagnostics, and each
diagnostic becomes a device-worded recommendation.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pagepulse.config import PerformanceThresholds
from pagepulse.constants import (
    PERFORMANCE_METRIC_WEIGHTS,
    SCORE_GOOD,
    SCORE_NEEDS_IMPROVEMENT,
    SCORE_POOR,
)
from pagepulse.models import CategoryScores, CoreWebVitals, Diagnostic, Recommendation

# A signal check passes at or above this value (ratios are 0-1)
SIGNAL_PASS_THRESHOLD = 0.9

METRIC_LABELS = {
    "lcp": "Largest Contentful Paint",
    "fcp": "First Contentful Paint",
    "cls": "Cumulative Layout Shift",
    "tbt": "Total Blocking Time",
    "ttfb": "Time to First Byte",
    "fid": "First Input Delay",
}

METRIC_ADVICE = {
    "lcp": "Preload the hero image, serve it in a modern format and cut render-blocking CSS.",
    "fcp": "Inline critical CSS and defer non-essential scripts.",
    "cls": "Set explicit width and height on images, embeds and ads.",
    "tbt": "Split long JavaScript tasks and defer third-party scripts.",
    "ttfb": "Cache HTML at the edge and reduce server processing time.",
    "fid": "Reduce main-thread work during page load.",
}


@dataclass(frozen=True)
class SignalCheck:
    """One DOM signal contributing to a category score."""
    signal: str
    category: str
    weight: int
    title: str
    description: str
    how_to_fix: str
    inverted: bool = False  # signal is a defect when true


SIGNAL_CHECKS = [
    # Accessibility
    SignalCheck("imagesWithAltRatio", "accessibility", 10, "Image Alt Text",
                "Some images have no alt attribute.",
                "Describe every meaningful image with alt text; use alt=\"\" for decorative ones."),
    SignalCheck("linksWithNameRatio", "accessibility", 7, "Link Names",
                "Some links have no discernible text.",
                "Give icon-only links an aria-label."),
    SignalCheck("inputsLabelledRatio", "accessibility", 7, "Form Labels",
                "Some form fields have no associated label.",
                "Associate a <label> with every input or add aria-label."),
    SignalCheck("hasLang", "accessibility", 5, "Language Declaration",
                "The <html> element has no lang attribute.",
                "Add lang=\"...\" to the <html> element."),
    SignalCheck("hasTitle", "accessibility", 3, "Document Title",
                "The page has no <title>.",
                "Add a descriptive <title> element."),

    # Best practices
    SignalCheck("isHttps", "best_practices", 10, "HTTPS",
                "The page is not served over HTTPS.",
                "Serve the site over HTTPS and redirect HTTP traffic."),
    SignalCheck("mixedContent", "best_practices", 7, "Mixed Content",
                "The page loads resources over plain HTTP.",
                "Load every subresource over HTTPS.", inverted=True),
    SignalCheck("hasDoctype", "best_practices", 5, "Doctype",
                "The page has no HTML doctype and renders in quirks mode.",
                "Add <!DOCTYPE html> as the first line."),
    SignalCheck("hasCharset", "best_practices", 3, "Character Encoding",
                "No character encoding is declared.",
                "Add <meta charset=\"utf-8\"> near the top of <head>."),
    SignalCheck("imagesWithDimensionsRatio", "best_practices", 5, "Image Dimensions",
                "Some images have no explicit width and height.",
                "Set width and height attributes on images to reserve layout space."),

    # SEO
    SignalCheck("hasTitle", "seo", 8, "Title Tag",
                "The page has no <title>.",
                "Write a unique 50-60 character title."),
    SignalCheck("hasMetaDescription", "seo", 7, "Meta Description",
                "The page has no meta description.",
                "Add a 150-160 character meta description."),
    SignalCheck("robotsNoindex", "seo", 10, "Indexable",
                "A robots meta tag blocks indexing.",
                "Remove noindex from the robots meta tag if the page should rank.", inverted=True),
    SignalCheck("hasViewport", "seo", 6, "Mobile Viewport",
                "No viewport meta tag; the page is not optimized for small screens.",
                "Add <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">."),
    SignalCheck("hasH1", "seo", 5, "H1 Heading",
                "The page has no H1 heading.",
                "Add exactly one H1 describing the page."),
    SignalCheck("hasCanonical", "seo", 4, "Canonical URL",
                "No canonical link is declared.",
                "Add <link rel=\"canonical\"> pointing at the preferred URL."),
    SignalCheck("hasStructuredData", "seo", 3, "Structured Data",
                "No JSON-LD structured data found.",
                "Describe the page with schema.org JSON-LD."),
]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def metric_status(value: Optional[float], bounds: Optional[tuple[float, float]]) -> str:
    """
    Categorize a metric as good / needs-improvement / poor.

    Returns:
        "unknown" when the value or thresholds are missing
    """
    if value is None or bounds is None:
        return "unknown"

    good, poor = bounds
    if value <= good:
        return "good"
    if value <= poor:
        return "needs-improvement"
    return "poor"


def metric_score(status: str) -> Optional[int]:
    return {
        "good": SCORE_GOOD,
        "needs-improvement": SCORE_NEEDS_IMPROVEMENT,
        "poor": SCORE_POOR,
    }.get(status)


def performance_score(
    vitals: CoreWebVitals,
    thresholds: PerformanceThresholds,
) -> Optional[int]:
    """
    Weighted performance score from the measured metrics.

    Missing metrics are left out and the remaining weights renormalized.
    Returns None when nothing was measured.
    """
    weighted = 0.0
    total_weight = 0.0
    for metric, weight in PERFORMANCE_METRIC_WEIGHTS.items():
        score = metric_score(metric_status(getattr(vitals, metric), thresholds.bounds(metric)))
        if score is None:
            continue
        weighted += score * weight
        total_weight += weight

    if total_weight == 0:
        return None
    return round_half_up(weighted / total_weight)


def _signal_value(signals: Dict[str, Any], check: SignalCheck) -> Optional[float]:
    raw = signals.get(check.signal)
    if raw is None:
        return None
    if isinstance(raw, bool):
        value = 1.0 if raw else 0.0
    else:
        value = min(1.0, max(0.0, float(raw)))
    return 1.0 - value if check.inverted else value


def signal_scores(signals: Dict[str, Any]) -> Dict[str, Optional[int]]:
    """Weighted 0-100 score per category; None when no signal was available."""
    totals: Dict[str, list[float]] = {}
    for check in SIGNAL_CHECKS:
        value = _signal_value(signals, check)
        if value is None:
            continue
        earned, possible = totals.setdefault(check.category, [0.0, 0.0])
        totals[check.category] = [earned + value * check.weight, possible + check.weight]

    return {
        category: round_half_up(earned / possible * 100) if possible else None
        for category, (earned, possible) in totals.items()
    }


def score_categories(
    vitals: CoreWebVitals,
    signals: Dict[str, Any],
    thresholds: PerformanceThresholds,
) -> CategoryScores:
    by_category = signal_scores(signals)
    return CategoryScores(
        performance=performance_score(vitals, thresholds),
        accessibility=by_category.get("accessibility"),
        best_practices=by_category.get("best_practices"),
        seo=by_category.get("seo"),
    )


def _format_metric(metric: str, value: float) -> str:
    if metric == "cls":
        return f"{value:.3f}"
    if value >= 1000:
        return f"{value / 1000:.1f} s"
    return f"{value:.0f} ms"


def build_diagnostics(
    vitals: CoreWebVitals,
    signals: Dict[str, Any],
    thresholds: PerformanceThresholds,
    device: str,
) -> list[Diagnostic]:
    """
    Diagnostics for every metric that is not good and every failing check.

    Descriptions name the device so merged results can tell them apart.
    """
    diagnostics = []

    for metric, label in METRIC_LABELS.items():
        value = getattr(vitals, metric)
        bounds = thresholds.bounds(metric)
        status = metric_status(value, bounds)
        if status in ("good", "unknown"):
            continue
        diagnostics.append(Diagnostic(
            id=metric,
            category="performance",
            title=label,
            description=(
                f"{label} is {_format_metric(metric, value)} on {device}; "
                f"aim for {_format_metric(metric, bounds[0])} or less."
            ),
            score=0.5 if status == "needs-improvement" else 0.0,
            display_value=_format_metric(metric, value),
        ))

    for check in SIGNAL_CHECKS:
        value = _signal_value(signals, check)
        if value is None or value >= SIGNAL_PASS_THRESHOLD:
            continue
        diagnostics.append(Diagnostic(
            id=f"{check.category}-{check.signal}",
            category=check.category,
            title=check.title,
            description=f"{check.description} (checked on {device})",
            score=round(value, 2),
        ))

    return diagnostics


def build_recommendations(diagnostics: list[Diagnostic], device: str) -> list[Recommendation]:
    """Turn diagnostics into recommendations worded for one device."""
    how_to_fix = {check.title: check.how_to_fix for check in SIGNAL_CHECKS}
    recommendations = []

    for diagnostic in diagnostics:
        severe = diagnostic.score is not None and diagnostic.score < 0.5
        if diagnostic.category == "performance":
            title = f"Improve {diagnostic.title} on {device}"
            fix = METRIC_ADVICE.get(diagnostic.id)
        else:
            title = f"Fix {diagnostic.title} on {device}"
            fix = how_to_fix.get(diagnostic.title)

        recommendations.append(Recommendation(
            category=diagnostic.category,
            title=title,
            description=diagnostic.description,
            type="error" if severe else "warning",
            priority="high" if severe else "medium",
            how_to_fix=fix,
        ))

    return recommendations
