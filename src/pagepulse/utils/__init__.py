"""
Utilities Package.

Challenge wall detection and waiting.
"""

from .challenge_handler import (
    detect_challenge,
    is_challenge_page,
    wait_for_challenge_resolution,
    CHALLENGE_INDICATORS,
    CHALLENGE_URL_PATTERNS,
)

__all__ = [
    "detect_challenge",
    "is_challenge_page",
    "wait_for_challenge_resolution",
    "CHALLENGE_INDICATORS",
    "CHALLENGE_URL_PATTERNS",
]
