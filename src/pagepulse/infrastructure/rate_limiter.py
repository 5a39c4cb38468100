"""
Per-target admission control.

Enforces a cooldown between two admitted analyses of the same target.
The controller only advises; turning a refusal into a caller-visible
error is the job queue's responsibility.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlparse

from pagepulse.constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    SWEEP_COOLDOWN_MULTIPLIER,
)
from pagepulse.models import RateLimitDecision, RateLimitEntry, ResourceKey

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_resource_key(target: str) -> ResourceKey:
    """
    Canonicalize a target URL into an admission-control key.

    Keeps scheme, host and path; drops query, fragment and a trailing slash.
    Anything that does not parse as an absolute URL falls back to the
    lowercased raw string.
    """
    raw = str(target).strip()
    try:
        parsed = urlparse(raw)
        port = parsed.port
    except ValueError:
        return raw.lower()

    if not parsed.scheme or not parsed.hostname:
        return raw.lower()

    scheme = parsed.scheme.lower()
    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    # Credentials and default ports are not part of the origin
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"

    path = parsed.path.rstrip("/")
    return f"{scheme}://{host}{path}"


@dataclass
class AdmissionConfig:
    """Configuration for admission control."""
    # Minimum seconds between two runs for the same key
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS

    # How often stale entries are swept (seconds)
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS


class AdmissionController:
    """
    Cooldown-based admission control keyed by normalized target.

    Features:
    - Per-key cooldown with remaining-wait hints
    - Attempt counting per key
    - Periodic sweep of stale entries on a background task
    """

    def __init__(
        self,
        config: AdmissionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize admission controller.

        Args:
            config: Admission configuration
            clock: Time source in seconds (monotonic by default)
        """
        self.config = config or AdmissionConfig()
        self._clock = clock
        self._entries: dict[ResourceKey, RateLimitEntry] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def cooldown_seconds(self) -> int:
        return self.config.cooldown_seconds

    def check_rate_limit(self, key: ResourceKey) -> RateLimitDecision:
        """
        Check whether a run for key may start now.

        Args:
            key: Normalized resource key

        Returns:
            RateLimitDecision with retry hint when refused
        """
        entry = self._entries.get(key)
        if entry is None:
            return RateLimitDecision(allowed=True)

        elapsed = self._clock() - entry.last_run_at
        if elapsed >= self.config.cooldown_seconds:
            return RateLimitDecision(allowed=True)

        retry_after = math.ceil(self.config.cooldown_seconds - elapsed)
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after)

    def record_run(self, key: ResourceKey) -> RateLimitEntry:
        """
        Record that a run for key was dispatched.

        Args:
            key: Normalized resource key

        Returns:
            The updated entry
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = RateLimitEntry(key=key, last_run_at=now)
            self._entries[key] = entry

        entry.last_run_at = now
        entry.attempt_count += 1
        return entry

    def get_entry(self, key: ResourceKey) -> Optional[RateLimitEntry]:
        """Current entry for key, if any."""
        return self._entries.get(key)

    def sweep(self) -> int:
        """
        Evict entries idle for longer than twice the cooldown.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - self.config.cooldown_seconds * SWEEP_COOLDOWN_MULTIPLIER
        stale = [key for key, entry in self._entries.items() if entry.last_run_at < cutoff]
        for key in stale:
            del self._entries[key]

        if stale:
            logger.debug(f"Admission sweep removed {len(stale)} stale entries")
        return len(stale)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep task on the running loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.debug(
            f"Admission sweep started (every {self.config.sweep_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def reset(self) -> None:
        """Forget all admission state."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
