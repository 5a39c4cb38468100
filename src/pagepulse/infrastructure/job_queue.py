"""
Bounded job queue.

Caps how many analyses run at once. Requests beyond the ceiling wait in
strict FIFO order; each completion hands its slot directly to the head of
the queue, so the number of running jobs never exceeds the ceiling.

All state is touched only from the event loop thread and never across an
await, which serializes every mutation.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, TypeVar

from pagepulse.constants import DEFAULT_MAX_CONCURRENT_ANALYSES
from pagepulse.exceptions import RateLimited
from pagepulse.infrastructure.rate_limiter import AdmissionController
from pagepulse.models import QueueEntry, QueueStatus, ResourceKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedJobQueue:
    """
    FIFO admission of jobs under a concurrency ceiling.

    Features:
    - Rate-limit check before queueing and again at dispatch
    - Direct slot hand-off from finishing jobs to queued ones
    - Cancellation-safe waiting (a cancelled waiter never leaks a slot)
    - Status and queue-position reporting for UI polling
    """

    def __init__(
        self,
        admission: AdmissionController,
        ceiling: int = DEFAULT_MAX_CONCURRENT_ANALYSES,
    ):
        """
        Initialize job queue.

        Args:
            admission: Admission controller consulted for every run
            ceiling: Maximum number of concurrently executing jobs
        """
        if ceiling < 1:
            raise ValueError("ceiling must be at least 1")

        self.admission = admission
        self.ceiling = ceiling

        self._active = 0
        self._active_keys: list[ResourceKey] = []
        self._waiting: Deque[QueueEntry] = deque()

        # Statistics
        self._total_started = 0
        self._peak_active = 0

    async def run(self, key: ResourceKey, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run work for key once admitted and a slot is free.

        Args:
            key: Normalized resource key
            work: Zero-argument coroutine function performing the job

        Returns:
            Whatever work returns

        Raises:
            RateLimited: If the key is still cooling down, either on arrival
                or when its turn comes up
        """
        self._raise_if_limited(key)

        if self._active < self.ceiling and not self._waiting:
            self._active += 1
        else:
            await self._wait_for_slot(key)
            try:
                self._raise_if_limited(key)
            except RateLimited:
                self._release()
                raise

        self.admission.record_run(key)
        self._active_keys.append(key)
        self._total_started += 1
        self._peak_active = max(self._peak_active, self._active)

        try:
            return await work()
        finally:
            self._active_keys.remove(key)
            self._release()

    def _raise_if_limited(self, key: ResourceKey) -> None:
        decision = self.admission.check_rate_limit(key)
        if not decision.allowed:
            raise RateLimited(decision.retry_after_seconds or 0, key=key)

    async def _wait_for_slot(self, key: ResourceKey) -> None:
        loop = asyncio.get_running_loop()
        entry = QueueEntry(key=key, enqueued_at=time.monotonic(), completion=loop.create_future())
        self._waiting.append(entry)

        position = len(self._waiting)
        logger.info(f"[QUEUE] {key} added to queue at position {position}")

        try:
            await entry.completion
        except asyncio.CancelledError:
            if entry in self._waiting:
                self._waiting.remove(entry)
            elif entry.completion.done() and not entry.completion.cancelled():
                # The dispatcher already handed us a slot
                self._release()
            raise

        waited = time.monotonic() - entry.enqueued_at
        logger.info(f"[QUEUE] Processing queued analysis for {key} after {waited:.1f}s")

    def _release(self) -> None:
        """Free one slot and hand it to the next live waiter."""
        self._active -= 1
        while self._waiting and self._active < self.ceiling:
            entry = self._waiting.popleft()
            if entry.completion.done():
                continue  # Waiter was cancelled
            self._active += 1
            entry.completion.set_result(None)

    def status(self) -> QueueStatus:
        """Current queue status."""
        return QueueStatus(
            active=self._active,
            queued=len(self._waiting),
            ceiling=self.ceiling,
            cooldown_seconds=self.admission.cooldown_seconds,
        )

    def position_of(self, key: ResourceKey) -> int:
        """
        1-based queue position of key, or 0 when it is not waiting.
        """
        for index, entry in enumerate(self._waiting):
            if entry.key == key:
                return index + 1
        return 0

    def is_active(self, key: ResourceKey) -> bool:
        """Whether a job for key is currently executing."""
        return key in self._active_keys

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak_active(self) -> int:
        """Highest number of simultaneously running jobs seen."""
        return self._peak_active

    @property
    def total_started(self) -> int:
        return self._total_started
