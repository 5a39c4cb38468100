"""
Waterfall aggregation.

Turns a list of resource timings into summary metrics: totals, render
blocking and critical counts, the peak number of in-flight requests, cache
hit rate and an estimate of what compression would save.
"""

import logging
from typing import Iterable, Sequence

from pagepulse.constants import (
    COMPRESSION_RESIDUAL_RATIOS,
    DEFAULT_COMPRESSION_RESIDUAL_RATIO,
)
from pagepulse.models import ResourceTimingRecord, WaterfallSummary

logger = logging.getLogger(__name__)

# Event kinds; ends sort before starts at the same timestamp, so a request
# finishing exactly when another begins is not counted as overlapping.
_END = 0
_START = 1


def max_parallelism(records: Iterable[ResourceTimingRecord]) -> int:
    """
    Peak number of resources in flight at once.

    Sweep line over start (+1) and end (-1) events.
    """
    events = []
    for record in records:
        events.append((record.start_time, _START))
        events.append((record.end_time, _END))
    events.sort()

    current = 0
    peak = 0
    for _, kind in events:
        if kind == _START:
            current += 1
            peak = max(peak, current)
        else:
            current -= 1
    return peak


def compression_class(record: ResourceTimingRecord) -> str:
    """Map a resource to its key in COMPRESSION_RESIDUAL_RATIOS."""
    if record.type in ("script", "stylesheet", "document"):
        return record.type

    mime = record.mime_type.lower()
    if "jpeg" in mime or "jpg" in mime:
        return "jpeg"
    if "png" in mime:
        return "png"
    return "other"


class WaterfallAggregator:
    """Summarizes resource timing records."""

    def __init__(
        self,
        residual_ratios: dict[str, float] | None = None,
        default_ratio: float = DEFAULT_COMPRESSION_RESIDUAL_RATIO,
    ):
        self.residual_ratios = residual_ratios if residual_ratios is not None else dict(COMPRESSION_RESIDUAL_RATIOS)
        self.default_ratio = default_ratio

    def summarize(self, records: Sequence[ResourceTimingRecord]) -> WaterfallSummary:
        """
        Build a WaterfallSummary.

        Args:
            records: Resource timings for one page load

        Returns:
            WaterfallSummary; all zeros for an empty list
        """
        if not records:
            return WaterfallSummary(
                total_resources=0,
                total_size=0,
                total_duration=0.0,
                render_blocking_count=0,
                critical_count=0,
                max_parallelism=0,
                cache_hit_rate=0.0,
                compression_savings_pct=0.0,
            )

        total = len(records)
        total_size = sum(r.size_bytes for r in records)
        start = min(r.start_time for r in records)
        end = max(r.end_time for r in records)
        cached = sum(1 for r in records if r.cached)

        return WaterfallSummary(
            total_resources=total,
            total_size=total_size,
            total_duration=round(max(0.0, end - start), 2),
            render_blocking_count=sum(1 for r in records if r.render_blocking),
            critical_count=sum(1 for r in records if r.critical),
            max_parallelism=max_parallelism(records),
            cache_hit_rate=round(cached / total * 100, 2),
            compression_savings_pct=self.compression_savings(records),
        )

    def compression_savings(self, records: Sequence[ResourceTimingRecord]) -> float:
        """
        Estimated percentage of bytes compression would remove.

        savings = (1 - sum(size * residual_ratio) / sum(size)) * 100
        """
        total_size = sum(r.size_bytes for r in records)
        if total_size <= 0:
            return 0.0

        compressed = sum(
            r.size_bytes * self.residual_ratios.get(compression_class(r), self.default_ratio)
            for r in records
        )
        return round((1 - compressed / total_size) * 100, 2)
