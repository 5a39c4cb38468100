"""Error taxonomy for the analysis pipeline.

Only RateLimited and SiteProtectionActive are meant to reach callers as
structured, user-actionable errors. EngineFailure and CaptureTimeout are
absorbed by the orchestrator and turned into degraded results; InternalError
is the last-resort catch-all.
"""

from typing import Optional


class PagePulseError(Exception):
    """Base class for all pagepulse errors."""

    error_type = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for an HTTP/JSON layer."""
        return {"type": self.error_type, "message": self.message}


class RateLimited(PagePulseError):
    """Raised when the same target was analyzed too recently."""

    error_type = "RATE_LIMIT_ERROR"

    def __init__(self, retry_after_seconds: int, key: str = ""):
        self.retry_after_seconds = retry_after_seconds
        self.key = key
        super().__init__(
            f"Please wait {retry_after_seconds} seconds before analyzing "
            f"this URL again."
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class SiteProtectionActive(PagePulseError):
    """Raised when the target sits behind a bot-verification wall.

    Never triggers the heuristic fallback.
    """

    error_type = "SITE_PROTECTION_ACTIVE"

    REMEDIATION = (
        "The site is protected by an automated human-verification challenge. "
        "Temporarily allow-list the analyzer in your WAF/CDN settings, or run "
        "the analysis from a network the protection service trusts."
    )

    def __init__(
        self,
        details: str,
        challenge_type: Optional[str] = None,
        device: Optional[str] = None,
    ):
        self.details = details
        self.challenge_type = challenge_type
        self.device = device
        super().__init__(f"Site protection active: {details}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "details": self.details,
            "challenge_type": self.challenge_type,
            "device": self.device,
            "remediation": self.REMEDIATION,
        })
        return data


class EngineFailure(PagePulseError):
    """The primary measurement path failed for a non-protection reason."""

    error_type = "ENGINE_FAILURE"

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class CaptureTimeout(PagePulseError):
    """A screenshot or trace capture exceeded its time budget."""

    error_type = "CAPTURE_TIMEOUT"

    def __init__(self, label: str, timeout_ms: int):
        self.label = label
        self.timeout_ms = timeout_ms
        super().__init__(f"Capture '{label}' exceeded {timeout_ms}ms")


class InternalError(PagePulseError):
    """Unexpected failure; the job fails."""

    error_type = "INTERNAL_ERROR"
