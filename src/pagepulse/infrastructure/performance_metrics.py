"""
Browser Performance Metrics Collection.

Collects real runtime metrics from a loaded page using:
- Performance API (PerformanceObserver, performance.getEntriesByType)
- Layout Instability API (for CLS)
- Largest Contentful Paint API
- Resource Timing (for the waterfall trace)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pagepulse.constants import CRITICAL_RESOURCE_TYPES
from pagepulse.models import CoreWebVitals, ResourceTimingRecord

logger = logging.getLogger(__name__)


# JavaScript to inject for performance metric collection
PERFORMANCE_OBSERVER_SCRIPT = """
() => {
    window.__perfMetrics = window.__perfMetrics || {
        fcp: null,
        lcp: null,
        cls: 0,
        ttfb: null,
        domContentLoaded: null,
        load: null,
        longTasks: [],
        firstInput: null,
        errors: []
    };

    try {
        const navTiming = performance.getEntriesByType('navigation')[0];
        if (navTiming) {
            window.__perfMetrics.ttfb = navTiming.responseStart;
            window.__perfMetrics.domContentLoaded = navTiming.domContentLoadedEventEnd;
            window.__perfMetrics.load = navTiming.loadEventEnd;
        }

        for (const entry of performance.getEntriesByType('paint')) {
            if (entry.name === 'first-contentful-paint') {
                window.__perfMetrics.fcp = entry.startTime;
            }
        }

        if ('PerformanceObserver' in window) {
            try {
                new PerformanceObserver((list) => {
                    const entries = list.getEntries();
                    const lastEntry = entries[entries.length - 1];
                    if (lastEntry) {
                        window.__perfMetrics.lcp = lastEntry.startTime;
                    }
                }).observe({ type: 'largest-contentful-paint', buffered: true });
            } catch (e) {
                window.__perfMetrics.errors.push('LCP observer: ' + e.message);
            }

            try {
                new PerformanceObserver((list) => {
                    for (const entry of list.getEntries()) {
                        if (!entry.hadRecentInput) {
                            window.__perfMetrics.cls += entry.value;
                        }
                    }
                }).observe({ type: 'layout-shift', buffered: true });
            } catch (e) {
                window.__perfMetrics.errors.push('CLS observer: ' + e.message);
            }

            try {
                new PerformanceObserver((list) => {
                    for (const entry of list.getEntries()) {
                        window.__perfMetrics.longTasks.push({
                            duration: entry.duration,
                            startTime: entry.startTime
                        });
                    }
                }).observe({ type: 'longtask', buffered: true });
            } catch (e) {
                window.__perfMetrics.errors.push('Long task observer: ' + e.message);
            }

            try {
                new PerformanceObserver((list) => {
                    const entries = list.getEntries();
                    if (entries.length > 0) {
                        window.__perfMetrics.firstInput = {
                            delay: entries[0].processingStart - entries[0].startTime
                        };
                    }
                }).observe({ type: 'first-input', buffered: true });
            } catch (e) {
                window.__perfMetrics.errors.push('FID observer: ' + e.message);
            }
        }
    } catch (e) {
        window.__perfMetrics.errors.push('Setup error: ' + e.message);
    }

    return true;
}
"""

# Script to retrieve collected metrics
GET_METRICS_SCRIPT = """
() => {
    return window.__perfMetrics || null;
}
"""

# Script returning the navigation entry plus every resource entry
RESOURCE_TIMING_SCRIPT = """
() => {
    const toRecord = (e, initiatorType) => ({
        name: e.name,
        initiatorType: initiatorType || e.initiatorType,
        transferSize: e.transferSize || 0,
        encodedBodySize: e.encodedBodySize || 0,
        decodedBodySize: e.decodedBodySize || 0,
        startTime: e.startTime,
        responseEnd: e.responseEnd,
        renderBlockingStatus: e.renderBlockingStatus || null
    });
    const records = [];
    const nav = performance.getEntriesByType('navigation')[0];
    if (nav) {
        records.push(toRecord(nav, 'navigation'));
    }
    for (const e of performance.getEntriesByType('resource')) {
        records.push(toRecord(e));
    }
    return records;
}
"""

# Script returning DOM signals used for the non-performance categories
PAGE_SIGNALS_SCRIPT = """
() => {
    const q = (s) => document.querySelector(s);
    const images = Array.from(document.images);
    const withAlt = images.filter(i => i.hasAttribute('alt')).length;
    const withDims = images.filter(i => i.hasAttribute('width') && i.hasAttribute('height')).length;
    const links = Array.from(document.querySelectorAll('a[href]'));
    const namedLinks = links.filter(a => (a.textContent || '').trim() || a.getAttribute('aria-label')).length;
    const inputs = Array.from(document.querySelectorAll('input:not([type=hidden]), select, textarea'));
    const labelled = inputs.filter(i =>
        i.getAttribute('aria-label') || i.getAttribute('aria-labelledby') ||
        (i.id && document.querySelector('label[for="' + i.id + '"]')) || i.closest('label')
    ).length;
    const description = q('meta[name="description"]');
    const viewport = q('meta[name="viewport"]');
    return {
        hasTitle: !!(document.title && document.title.trim()),
        hasMetaDescription: !!(description && description.getAttribute('content')),
        hasViewport: !!viewport,
        hasCanonical: !!q('link[rel="canonical"]'),
        hasLang: !!document.documentElement.getAttribute('lang'),
        hasCharset: !!q('meta[charset]') || !!document.characterSet,
        hasH1: !!q('h1'),
        hasStructuredData: !!q('script[type="application/ld+json"]'),
        robotsNoindex: !!(q('meta[name="robots"]') &&
            /noindex/i.test(q('meta[name="robots"]').getAttribute('content') || '')),
        imagesWithAltRatio: images.length ? withAlt / images.length : 1,
        imagesWithDimensionsRatio: images.length ? withDims / images.length : 1,
        linksWithNameRatio: links.length ? namedLinks / links.length : 1,
        inputsLabelledRatio: inputs.length ? labelled / inputs.length : 1,
        isHttps: location.protocol === 'https:',
        hasDoctype: !!document.doctype,
        mixedContent: Array.from(document.querySelectorAll('img[src^="http:"], script[src^="http:"], link[href^="http:"]')).length > 0
    };
}
"""

# Resource classification by file extension
_EXTENSION_TYPES = {
    ".css": ("stylesheet", "text/css"),
    ".js": ("script", "application/javascript"),
    ".mjs": ("script", "application/javascript"),
    ".jpg": ("image", "image/jpeg"),
    ".jpeg": ("image", "image/jpeg"),
    ".png": ("image", "image/png"),
    ".gif": ("image", "image/gif"),
    ".webp": ("image", "image/webp"),
    ".avif": ("image", "image/avif"),
    ".svg": ("image", "image/svg+xml"),
    ".woff": ("font", "font/woff"),
    ".woff2": ("font", "font/woff2"),
    ".ttf": ("font", "font/ttf"),
    ".otf": ("font", "font/otf"),
}

_INITIATOR_TYPES = {
    "navigation": "document",
    "script": "script",
    "css": "stylesheet",
    "img": "image",
    "image": "image",
    "fetch": "fetch",
    "xmlhttprequest": "xhr",
    "beacon": "fetch",
}


@dataclass
class LongTaskEntry:
    """Long task entry."""
    duration: float
    start_time: float


@dataclass
class BrowserPerformanceMetrics:
    """
    Browser performance metrics for one page load.

    Contains actual measurements from the browser's Performance API,
    not estimates from static HTML analysis.
    """
    fcp: Optional[float] = None  # First Contentful Paint (ms)
    lcp: Optional[float] = None  # Largest Contentful Paint (ms)
    cls: Optional[float] = None  # Cumulative Layout Shift (score)
    fid: Optional[float] = None  # First Input Delay (ms)
    ttfb: Optional[float] = None  # Time to First Byte (ms)
    dom_content_loaded: Optional[float] = None  # ms
    load: Optional[float] = None  # ms
    long_tasks: List[LongTaskEntry] = field(default_factory=list)
    url: str = ""
    collected: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def total_blocking_time(self) -> float:
        """Sum of long task time beyond 50ms."""
        return sum(max(0.0, task.duration - 50) for task in self.long_tasks)

    def to_core_web_vitals(self) -> CoreWebVitals:
        return CoreWebVitals(
            lcp=self.lcp,
            fid=self.fid,
            cls=self.cls,
            fcp=self.fcp,
            ttfb=self.ttfb,
            tbt=self.total_blocking_time if self.collected else None,
        )


async def inject_performance_observers(page) -> bool:
    """
    Inject performance observers into a page.

    Observers are registered with buffered=true, so entries recorded before
    injection are still delivered.

    Returns:
        True if injection succeeded
    """
    try:
        await page.evaluate(PERFORMANCE_OBSERVER_SCRIPT)
        logger.debug("Performance observers injected")
        return True
    except Exception as e:
        logger.warning(f"Failed to inject performance observers: {e}")
        return False


async def collect_performance_metrics(page, url: str = "") -> BrowserPerformanceMetrics:
    """
    Collect performance metrics from a page.

    Call this after the page has loaded and settled.

    Args:
        page: Browser page instance
        url: URL being measured (for reference)

    Returns:
        BrowserPerformanceMetrics with collected data
    """
    metrics = BrowserPerformanceMetrics(url=url)

    try:
        raw_metrics = await page.evaluate(GET_METRICS_SCRIPT)
    except Exception as e:
        metrics.errors.append(f"Collection error: {e}")
        logger.warning(f"Error collecting performance metrics: {e}")
        return metrics

    if not raw_metrics:
        metrics.errors.append("No metrics collected - observers may not have been injected")
        return metrics

    metrics.collected = True
    metrics.fcp = raw_metrics.get('fcp')
    metrics.lcp = raw_metrics.get('lcp')
    metrics.cls = raw_metrics.get('cls', 0.0)
    metrics.ttfb = raw_metrics.get('ttfb')
    metrics.dom_content_loaded = raw_metrics.get('domContentLoaded')
    metrics.load = raw_metrics.get('load')

    first_input = raw_metrics.get('firstInput')
    if first_input:
        metrics.fid = first_input.get('delay')

    for task in raw_metrics.get('longTasks', []):
        metrics.long_tasks.append(LongTaskEntry(
            duration=task.get('duration', 0),
            start_time=task.get('startTime', 0),
        ))

    metrics.errors.extend(raw_metrics.get('errors', []))

    cls_display = f"{metrics.cls:.3f}" if metrics.cls is not None else "n/a"
    logger.info(f"Collected performance metrics: LCP={metrics.lcp}ms, CLS={cls_display}")
    return metrics


async def measure_page_performance(page, url: str, wait_time: float = 2.0) -> BrowserPerformanceMetrics:
    """
    Complete workflow: inject observers, wait for page to settle, collect metrics.

    Args:
        page: Browser page instance
        url: URL being measured
        wait_time: Seconds to wait for metrics to stabilize

    Returns:
        BrowserPerformanceMetrics with all collected data
    """
    await inject_performance_observers(page)

    # LCP can keep updating for a few seconds
    await asyncio.sleep(wait_time)

    return await collect_performance_metrics(page, url)


async def collect_page_signals(page) -> Dict[str, Any]:
    """Evaluate DOM signals for accessibility/best-practices/SEO scoring."""
    try:
        return await page.evaluate(PAGE_SIGNALS_SCRIPT) or {}
    except Exception as e:
        logger.warning(f"Failed to collect page signals: {e}")
        return {}


def classify_resource(initiator_type: str, url: str) -> tuple[str, str]:
    """
    Map a resource timing entry to (type, mime_type).

    The file extension wins over the initiator type, since a <link> can load
    a stylesheet, a font or an image.
    """
    path = urlparse(url).path.lower()
    for extension, classification in _EXTENSION_TYPES.items():
        if path.endswith(extension):
            return classification

    resource_type = _INITIATOR_TYPES.get((initiator_type or "").lower(), "other")
    mime_type = "text/html" if resource_type == "document" else ""
    return resource_type, mime_type


def to_resource_record(raw: Dict[str, Any]) -> ResourceTimingRecord:
    """Convert one RESOURCE_TIMING_SCRIPT entry into a ResourceTimingRecord."""
    url = raw.get("name", "")
    resource_type, mime_type = classify_resource(raw.get("initiatorType", ""), url)

    transfer_size = int(raw.get("transferSize") or 0)
    decoded_size = int(raw.get("decodedBodySize") or 0)
    encoded_size = int(raw.get("encodedBodySize") or 0)
    size_bytes = decoded_size or encoded_size or transfer_size

    start_time = float(raw.get("startTime") or 0.0)
    end_time = float(raw.get("responseEnd") or start_time)

    render_blocking = raw.get("renderBlockingStatus") == "blocking"

    return ResourceTimingRecord(
        url=url,
        type=resource_type,
        size_bytes=size_bytes,
        start_time=start_time,
        end_time=max(start_time, end_time),
        cached=transfer_size == 0 and decoded_size > 0,
        render_blocking=render_blocking,
        critical=render_blocking or resource_type in CRITICAL_RESOURCE_TYPES,
        mime_type=mime_type,
    )


async def collect_resource_timings(page) -> List[ResourceTimingRecord]:
    """
    Read every resource timing entry from a loaded page.

    Returns:
        One record per fetched resource, navigation document first
    """
    raw_entries = await page.evaluate(RESOURCE_TIMING_SCRIPT) or []
    return [to_resource_record(entry) for entry in raw_entries]
