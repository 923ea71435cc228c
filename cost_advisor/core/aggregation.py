"""
Metric aggregation over a lookback window.

Reduces per-observation metric statistics into one summary per metric.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from statistics import pstdev
from typing import Dict, List, Optional

from cost_advisor.storage.models import UsageRecord


DEFAULT_LOOKBACK_DAYS = 7


class AggregationState(Enum):
    """Whether the window held any observation at all."""
    NO_DATA = "no_data"
    OK = "ok"


@dataclass(frozen=True)
class MetricAggregate:
    """Aggregated statistics for one metric."""
    average: float
    maximum: float
    minimum: float
    sample_count: int
    stddev: float
    record_count: int
    unit: str = ""


@dataclass(frozen=True)
class AggregationResult:
    """Per-metric aggregates for one resource over a window.

    Metrics without samples are absent: ``get`` returns ``None`` so an
    unknown value is never mistaken for a measured zero.
    """
    state: AggregationState
    window_start: datetime
    window_end: datetime
    metrics: Dict[str, MetricAggregate] = field(default_factory=dict)
    records: List[UsageRecord] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.state == AggregationState.OK

    @property
    def record_count(self) -> int:
        return len(self.records)

    @property
    def latest(self) -> Optional[UsageRecord]:
        """Most recent observation in the window."""
        return self.records[-1] if self.records else None

    def get(self, metric: str) -> Optional[MetricAggregate]:
        return self.metrics.get(metric)


def aggregate_metrics(
    records: List[UsageRecord],
    now: Optional[datetime] = None,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
) -> AggregationResult:
    """Aggregate metric statistics of one resource over a trailing window.

    The average is the arithmetic mean of per-record averages, not a
    re-weighted mean of raw samples, since only per-record summaries are
    available. Records observed after ``now`` are ignored.

    Args:
        records: Observations of a single resource, in any order
        now: End of the window, defaults to the current UTC time
        lookback_days: Length of the window in days

    Returns:
        AggregationResult, in NO_DATA state when nothing falls in the window

    Raises:
        ValueError: If lookback_days is not positive
    """
    if lookback_days <= 0:
        raise ValueError("lookback_days must be > 0")

    window_end = now or datetime.now(timezone.utc)
    window_start = window_end - timedelta(days=lookback_days)

    in_window = sorted(
        (r for r in records if window_start <= r.observed_at <= window_end),
        key=lambda r: r.observed_at
    )

    if not in_window:
        return AggregationResult(
            state=AggregationState.NO_DATA,
            window_start=window_start,
            window_end=window_end
        )

    averages: Dict[str, List[float]] = {}
    maxima: Dict[str, List[float]] = {}
    minima: Dict[str, List[float]] = {}
    samples: Dict[str, int] = {}
    units: Dict[str, str] = {}

    for record in in_window:
        for name, stats in record.metrics.items():
            # No samples in this observation: contributes nothing
            if stats.sample_count == 0:
                continue
            averages.setdefault(name, []).append(stats.average)
            maxima.setdefault(name, []).append(stats.maximum)
            minima.setdefault(name, []).append(stats.minimum)
            samples[name] = samples.get(name, 0) + stats.sample_count
            units.setdefault(name, stats.unit)

    metrics = {}
    for name, values in averages.items():
        metrics[name] = MetricAggregate(
            average=sum(values) / len(values),
            maximum=max(maxima[name]),
            minimum=min(minima[name]),
            sample_count=samples[name],
            stddev=pstdev(values) if len(values) > 1 else 0.0,
            record_count=len(values),
            unit=units[name]
        )

    return AggregationResult(
        state=AggregationState.OK,
        window_start=window_start,
        window_end=window_end,
        metrics=metrics,
        records=in_window
    )
