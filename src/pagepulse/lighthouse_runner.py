"""
Lighthouse Performance Analyzer

Runs Google Lighthouse via CLI to collect category scores, Core Web Vitals
and failing audits for one device profile. Used as the optional page
measurement engine; when the binary is missing the device task scores the
page from its own browser metrics.
"""

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from pagepulse.constants import LIGHTHOUSE_TIMEOUT_SECONDS
from pagepulse.models import (
    CategoryScores,
    CoreWebVitals,
    Device,
    DeviceProfile,
    Diagnostic,
    MeasurementReport,
)

logger = logging.getLogger(__name__)

# Lighthouse category id -> CategoryScores field
CATEGORY_FIELDS = {
    "performance": "performance",
    "accessibility": "accessibility",
    "best-practices": "best_practices",
    "seo": "seo",
}

# Lighthouse audit id -> CoreWebVitals field
METRIC_AUDITS = {
    "largest-contentful-paint": "lcp",
    "first-contentful-paint": "fcp",
    "cumulative-layout-shift": "cls",
    "total-blocking-time": "tbt",
    "server-response-time": "ttfb",
    "max-potential-fid": "fid",
}


class LighthouseRunner:
    """Runs Lighthouse audits and parses results."""

    def __init__(
        self,
        lighthouse_path: str = "lighthouse",
        chrome_flags: Optional[list[str]] = None,
        timeout: int = LIGHTHOUSE_TIMEOUT_SECONDS,
    ):
        """
        Initialize the Lighthouse runner.

        Args:
            lighthouse_path: Name or path of the lighthouse executable
            chrome_flags: Additional Chrome flags (e.g., ['--headless'])
            timeout: Timeout for Lighthouse execution in seconds
        """
        self.lighthouse_path = lighthouse_path
        self.chrome_flags = chrome_flags or ["--headless", "--no-sandbox"]
        self.timeout = timeout

    def is_available(self) -> bool:
        """Whether the lighthouse executable can be found."""
        return shutil.which(self.lighthouse_path) is not None

    def build_command(self, url: str, profile: DeviceProfile, output_path: str) -> list[str]:
        cmd = [
            self.lighthouse_path,
            url,
            "--output=json",
            f"--output-path={output_path}",
            "--quiet",
            "--chrome-flags=" + " ".join(self.chrome_flags),
            "--only-categories=" + ",".join(CATEGORY_FIELDS),
        ]
        if profile.device is Device.DESKTOP:
            cmd.append("--preset=desktop")
        else:
            cmd.append("--form-factor=mobile")
        return cmd

    async def measure(self, url: str, profile: DeviceProfile) -> Optional[MeasurementReport]:
        """
        Run Lighthouse on a URL for one device profile.

        Args:
            url: The URL to audit
            profile: Device profile selecting the form factor

        Returns:
            MeasurementReport, or None if Lighthouse failed
        """
        with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as tmp_file:
            output_path = tmp_file.name

        cmd = self.build_command(url, profile, output_path)
        logger.info(f"Running Lighthouse ({profile.name}) on {url}")

        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)

            if process.returncode != 0:
                logger.error(f"Lighthouse failed for {url}: {stderr.decode(errors='replace')[:500]}")
                return None

            with open(output_path, "r") as f:
                lhr = json.load(f)

        except asyncio.TimeoutError:
            logger.error(f"Lighthouse timeout for {url} after {self.timeout}s")
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error running Lighthouse on {url}: {e}")
            return None
        finally:
            if process is not None and process.returncode is None:
                process.kill()
                await process.wait()
            Path(output_path).unlink(missing_ok=True)

        logger.info(f"Lighthouse completed successfully for {url}")
        return self.parse_report(lhr)

    def parse_report(self, lhr: Dict[str, Any]) -> MeasurementReport:
        """
        Parse a Lighthouse report (lhr = Lighthouse Result).

        Args:
            lhr: Lighthouse report JSON

        Returns:
            MeasurementReport with scores, vitals and failing audits
        """
        categories = lhr.get("categories", {})
        scores = CategoryScores()
        for category_id, field_name in CATEGORY_FIELDS.items():
            setattr(scores, field_name, self._get_score(categories.get(category_id)))

        audits = lhr.get("audits", {})
        vitals = CoreWebVitals()
        for audit_id, field_name in METRIC_AUDITS.items():
            setattr(vitals, field_name, self._get_metric_value(audits.get(audit_id)))

        return MeasurementReport(
            scores=scores,
            core_web_vitals=vitals,
            diagnostics=self._extract_diagnostics(categories, audits),
        )

    def _get_score(self, category: Optional[Dict]) -> Optional[int]:
        """Extract score from category (0-1) and convert to 0-100."""
        if not category:
            return None
        score = category.get("score")
        return int(round(score * 100)) if score is not None else None

    def _get_metric_value(self, audit: Optional[Dict]) -> Optional[float]:
        if not audit:
            return None
        return audit.get("numericValue")

    def _extract_diagnostics(self, categories: Dict, audits: Dict) -> list[Diagnostic]:
        """Failing audits, tagged with the category that references them."""
        audit_category = {}
        for category_id, category in categories.items():
            field_name = CATEGORY_FIELDS.get(category_id)
            if field_name is None:
                continue
            for ref in category.get("auditRefs", []):
                audit_category.setdefault(ref.get("id"), field_name)

        diagnostics = []
        for audit_id, audit in audits.items():
            score = audit.get("score")
            if score is None or score >= 0.9 or audit_id not in audit_category:
                continue
            diagnostics.append(Diagnostic(
                id=audit_id,
                category=audit_category[audit_id],
                title=audit.get("title", audit_id),
                description=audit.get("description", ""),
                score=score,
                display_value=audit.get("displayValue"),
            ))
        return diagnostics
