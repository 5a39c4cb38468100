"""
Heuristic fallback analyzer.

Static fetch plus HTML checks, used only when the browser pipeline fails for
a reason other than a challenge wall. Produces SEO, accessibility and best
practices scores; performance and Core Web Vitals are left empty because
they cannot be measured without a browser.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from pagepulse.constants import DESKTOP_USER_AGENT, FALLBACK_FETCH_TIMEOUT_SECONDS
from pagepulse.exceptions import EngineFailure
from pagepulse.models import CategoryScores, HeuristicReport, Recommendation
from pagepulse.scoring import round_half_up

logger = logging.getLogger(__name__)

REQUIRED_OG_TAGS = ("og:title", "og:description", "og:image", "og:url")


@dataclass(frozen=True)
class TechnicalCheck:
    key: str
    points: int
    tier: str  # critical / important / optimization
    category: str
    title: str
    description: str


TECHNICAL_CHECKS = [
    # Critical technical checks (higher points)
    TechnicalCheck("hasSSL", 8, "critical", "best_practices",
                   "HTTPS/SSL Security", "Website must use HTTPS for security and SEO"),
    TechnicalCheck("hasViewportMeta", 6, "critical", "seo",
                   "Mobile Viewport", "Viewport meta tag is essential for mobile optimization"),
    TechnicalCheck("hasH1Tag", 6, "critical", "seo",
                   "H1 Heading Tag", "Every page should have exactly one H1 tag"),
    TechnicalCheck("hasMetaDescription", 6, "critical", "seo",
                   "Meta Description", "Meta description is crucial for search results"),

    # Important technical checks (medium points)
    TechnicalCheck("hasCharset", 4, "important", "best_practices",
                   "Character Encoding", "Proper character encoding prevents display issues"),
    TechnicalCheck("hasLangAttribute", 4, "important", "accessibility",
                   "Language Declaration",
                   "HTML lang attribute helps search engines understand content language"),
    TechnicalCheck("hasCanonicalURL", 4, "important", "seo",
                   "Canonical URL", "Prevents duplicate content issues"),
    TechnicalCheck("hasSchemaMarkup", 5, "important", "seo",
                   "Schema Markup", "Structured data improves rich snippets"),
    TechnicalCheck("imagesHaveAltText", 4, "important", "accessibility",
                   "Image Alt Text", "Alt text improves accessibility and SEO"),
    TechnicalCheck("hasMultipleHeadings", 3, "important", "accessibility",
                   "Heading Structure", "Proper heading hierarchy improves content structure"),

    # Performance and optimization checks (lower points)
    TechnicalCheck("minifiedHTML", 2, "optimization", "best_practices",
                   "HTML Optimization", "Minified HTML improves loading speed"),
    TechnicalCheck("noInlineStyles", 2, "optimization", "best_practices",
                   "External Stylesheets", "External CSS improves caching and performance"),
    TechnicalCheck("responsiveImages", 3, "optimization", "best_practices",
                   "Responsive Images", "Optimized images for different screen sizes"),
    TechnicalCheck("imagesHaveDimensions", 2, "optimization", "best_practices",
                   "Image Dimensions", "Explicit image dimensions prevent layout shifts"),
    TechnicalCheck("hasInternalLinks", 2, "optimization", "seo",
                   "Internal Linking", "Internal links improve site navigation and SEO"),
    TechnicalCheck("sufficientContent", 3, "optimization", "seo",
                   "Content Length", "Sufficient content provides value to users"),
]


def run_technical_checks(soup: BeautifulSoup, html: str, url: str) -> dict[str, bool]:
    """Evaluate the static HTML checks for a fetched page."""
    checks: dict[str, bool] = {}
    hostname = urlparse(url).hostname or ""

    checks["hasViewportMeta"] = soup.find("meta", attrs={"name": "viewport"}) is not None
    checks["hasCharset"] = soup.find("meta", charset=True) is not None or "charset=" in html
    html_tag = soup.find("html")
    checks["hasLangAttribute"] = bool(html_tag and html_tag.get("lang"))
    checks["hasCanonicalURL"] = soup.find("link", rel="canonical") is not None
    checks["hasRobotsMeta"] = soup.find("meta", attrs={"name": "robots"}) is not None

    checks["hasSchemaMarkup"] = soup.find("script", type="application/ld+json") is not None
    checks["hasOpenGraph"] = soup.find("meta", property=re.compile(r"^og:")) is not None
    checks["hasTwitterCards"] = soup.find("meta", attrs={"name": re.compile(r"^twitter:")}) is not None

    images = soup.find_all("img")
    with_alt = sum(1 for img in images if img.get("alt"))
    with_dims = sum(1 for img in images if img.get("width") and img.get("height"))
    checks["imagesHaveAltText"] = not images or with_alt / len(images) >= 0.8
    checks["imagesHaveDimensions"] = not images or with_dims / len(images) >= 0.5

    internal_links = 0
    external_links = 0
    external_nofollow = 0
    for link in soup.find_all("a", href=True):
        href = link["href"]
        if href.startswith("/") or (hostname and hostname in href):
            internal_links += 1
        elif href.startswith("http"):
            external_links += 1
            if "nofollow" in (link.get("rel") or []):
                external_nofollow += 1
    checks["hasInternalLinks"] = internal_links > 0
    checks["externalLinksOptimized"] = external_links == 0 or external_nofollow / external_links >= 0.5

    checks["hasH1Tag"] = soup.find("h1") is not None
    checks["hasMultipleHeadings"] = len(soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])) > 1
    checks["hasMetaDescription"] = soup.find("meta", attrs={"name": "description"}) is not None

    checks["hasSSL"] = url.startswith("https://")
    checks["noInlineStyles"] = soup.find("style") is None and soup.find(style=True) is None
    collapsed = re.sub(r"\s+", " ", html)
    checks["minifiedHTML"] = bool(html) and len(collapsed) / len(html) >= 0.95

    checks["responsiveImages"] = (
        soup.find("img", srcset=True) is not None or soup.find("picture") is not None
    )
    checks["hasTwitterSite"] = soup.find("meta", attrs={"name": "twitter:site"}) is not None
    checks["hasOGImage"] = soup.find("meta", property="og:image") is not None

    checks["sufficientContent"] = len(soup.get_text()) > 300
    title_tag = soup.find("title")
    checks["keywordInTitle"] = bool(title_tag) and len(title_tag.get_text().split()) >= 3

    return checks


def _length_check(
    value: Optional[str],
    ideal: tuple[int, int],
    acceptable: tuple[int, int],
    label: str,
    recommendations: list[Recommendation],
) -> int:
    """Points for a title/description length, appending advice when off."""
    if not value:
        recommendations.append(Recommendation(
            category="seo",
            title=f"Missing {label}",
            description=f"Your page is missing a {label.lower()}, which is crucial for SEO.",
            type="error",
            priority="high",
        ))
        return 0

    length = len(value)
    if ideal[0] <= length <= ideal[1]:
        return 15
    if acceptable[0] <= length <= acceptable[1]:
        recommendations.append(Recommendation(
            category="seo",
            title=f"Optimize {label} Length",
            description=(
                f"{label} is {length} characters. "
                f"Recommended length is {ideal[0]}-{ideal[1]} characters."
            ),
        ))
        return 10

    recommendations.append(Recommendation(
        category="seo",
        title=f"Fix {label} Length",
        description=(
            f"{label} is {length} characters. This is outside the recommended "
            f"range of {ideal[0]}-{ideal[1]} characters."
        ),
        type="error",
        priority="high",
    ))
    return 5


def score_page(
    title: Optional[str],
    description: Optional[str],
    og_tags: dict[str, str],
    twitter_tags: dict[str, str],
    checks: dict[str, bool],
) -> tuple[CategoryScores, list[Recommendation]]:
    """
    Score a statically fetched page.

    SEO follows the title/description/social/technical point scheme capped
    at 100; accessibility and best practices are the share of technical
    check points earned in that category.
    """
    recommendations: list[Recommendation] = []

    seo = _length_check(title, (50, 60), (30, 80), "Title Tag", recommendations)
    seo += _length_check(description, (150, 160), (120, 200), "Meta Description", recommendations)

    if og_tags:
        missing = [tag for tag in REQUIRED_OG_TAGS if tag not in og_tags]
        if missing:
            seo += 10
            recommendations.append(Recommendation(
                category="seo",
                title="Incomplete Open Graph Tags",
                description=f"Missing Open Graph tags: {', '.join(missing)}",
            ))
        else:
            seo += 20
    else:
        recommendations.append(Recommendation(
            category="seo",
            title="Missing Open Graph Tags",
            description="Open Graph tags are missing. These are essential for social media sharing.",
            type="error",
            priority="high",
        ))

    if twitter_tags:
        seo += 15
    else:
        recommendations.append(Recommendation(
            category="seo",
            title="Missing Twitter Cards",
            description="Twitter Card tags are missing. These optimize how your content appears on Twitter.",
            type="error",
            priority="high",
        ))

    earned = {"accessibility": 0, "best_practices": 0}
    possible = {"accessibility": 0, "best_practices": 0}

    for check in TECHNICAL_CHECKS:
        passed = checks.get(check.key, False)
        if check.category in possible:
            possible[check.category] += check.points
            if passed:
                earned[check.category] += check.points
        elif passed:
            seo += check.points

        if passed:
            continue

        critical = check.tier == "critical"
        recommendations.append(Recommendation(
            category=check.category,
            title=f"{'Missing' if critical else 'Improve'}: {check.title}",
            description=check.description,
            type="error" if critical else "warning",
            priority="high" if critical else "medium",
        ))

    scores = CategoryScores(
        performance=None,
        accessibility=round_half_up(earned["accessibility"] / possible["accessibility"] * 100),
        best_practices=round_half_up(earned["best_practices"] / possible["best_practices"] * 100),
        seo=min(seo, 100),
    )
    return scores, recommendations


class HeuristicFallbackAnalyzer:
    """Browserless analysis from a single static fetch."""

    def __init__(
        self,
        timeout: float = FALLBACK_FETCH_TIMEOUT_SECONDS,
        user_agent: str = DESKTOP_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize fallback analyzer.

        Args:
            timeout: Fetch timeout in seconds
            user_agent: User-Agent header sent with the fetch
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    async def fetch(self, url: str) -> httpx.Response:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            return response

    async def analyze(self, url: str) -> HeuristicReport:
        """
        Fetch url and score its HTML.

        Raises:
            EngineFailure: If the page could not be fetched
        """
        started = time.monotonic()
        try:
            response = await self.fetch(url)
        except httpx.TimeoutException as e:
            logger.error(f"Fallback fetch timed out for {url} (>{self.timeout}s)")
            raise EngineFailure(f"Failed to fetch website content: timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Fallback fetch failed for {url}: {e}")
            raise EngineFailure(f"Failed to fetch website content: {e}") from e
        load_time = time.monotonic() - started

        html = response.text
        soup = BeautifulSoup(html, "html.parser")

        title_tag = soup.find("title")
        title = title_tag.get_text().strip() if title_tag else None
        description_tag = soup.find("meta", attrs={"name": "description"})
        description = description_tag.get("content") if description_tag else None

        og_tags = {
            tag["property"]: tag["content"]
            for tag in soup.find_all("meta", property=re.compile(r"^og:"))
            if tag.get("content")
        }
        twitter_tags = {
            tag["name"]: tag["content"]
            for tag in soup.find_all("meta", attrs={"name": re.compile(r"^twitter:")})
            if tag.get("content")
        }

        checks = run_technical_checks(soup, html, str(response.url))
        scores, recommendations = score_page(title or None, description, og_tags, twitter_tags, checks)

        logger.info(f"Heuristic analysis of {url} complete (seo={scores.seo})")
        return HeuristicReport(
            url=url,
            status_code=response.status_code,
            title=title or None,
            description=description,
            scores=scores,
            technical_checks=checks,
            recommendations=recommendations,
            load_time=load_time,
        )
