"""
Metric registry: rates, trends and counters.

Every virtual user writes to the same registry, so each metric guards
its own state with a lock.  There is deliberately no registry-wide lock
on the write path; two workers recording different metrics never
contend with each other.  The registry lock is only taken when a metric
is created for the first time.

Snapshots are immutable value objects.  Trend percentiles are computed
exactly by sorting the retained samples at snapshot time, which is far
less frequent than inserts.  The raw sample buffer is bounded; when it
overflows the oldest samples are evicted, which only approximates
percentiles.  Counts, sums, minimums and maximums stay exact.

Key Concepts Demonstrated:
- Per-metric locking instead of a global lock
- Associative, commutative merges so partial registries combine in any
  order
- Bounded memory for high-volume latency distributions
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, ClassVar, Iterator, Mapping, Sequence

from loadrig.errors import MetricTypeError

DEFAULT_PERCENTILES: tuple[float, ...] = (50.0, 90.0, 95.0, 99.0, 99.9)
DEFAULT_SAMPLE_BUFFER = 10000


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """
    Linear-interpolated percentile of an already sorted sequence.

    Args:
        sorted_values: Samples in ascending order; must not be empty.
        pct: Percentile in the closed range ``[0, 100]``.

    Returns:
        The interpolated value at ``pct``.
    """
    if not sorted_values:
        raise ValueError("percentile of an empty sequence")
    if not 0.0 <= pct <= 100.0:
        raise ValueError(f"percentile must be within [0, 100], got {pct}")

    rank = (len(sorted_values) - 1) * pct / 100.0
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(sorted_values[int(rank)])
    weight = rank - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight


# =====================================================================
# Snapshots
# =====================================================================


@dataclass(frozen=True)
class RateSnapshot:
    """Proportion of truthy samples added to a :class:`Rate`."""

    kind: ClassVar[str] = "rate"

    name: str
    passes: int
    total: int

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0.0

    @property
    def fail_rate(self) -> float:
        return self.fails / self.total if self.total else 0.0

    def value(self, aggregation: str) -> float:
        values = {
            "rate": self.rate,
            "fail_rate": self.fail_rate,
            "count": self.total,
            "passes": self.passes,
            "fails": self.fails,
        }
        if aggregation not in values:
            raise KeyError(f"Rate metric {self.name!r} has no '{aggregation}' aggregation")
        return float(values[aggregation])


@dataclass(frozen=True)
class TrendSnapshot:
    """
    Distribution summary of a :class:`Trend`.

    ``samples`` holds the retained raw samples in ascending order.  A
    snapshot built from pre-aggregated data (for instance a Locust stats
    CSV) has no samples and answers only the percentiles given in
    ``known_percentiles``.
    """

    kind: ClassVar[str] = "trend"

    name: str
    count: int
    total: float
    min: float
    max: float
    samples: tuple[float, ...] = ()
    known_percentiles: Mapping[float, float] = field(default_factory=dict)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    @property
    def med(self) -> float:
        return self.percentile(50.0)

    def percentile(self, pct: float) -> float:
        if pct in self.known_percentiles:
            return float(self.known_percentiles[pct])
        if not self.samples:
            if self.count == 0:
                return 0.0
            raise KeyError(f"Trend metric {self.name!r} has no samples for p({pct:g})")
        return percentile(self.samples, pct)

    def percentiles(self, pcts: Sequence[float] = DEFAULT_PERCENTILES) -> dict[float, float]:
        return {pct: self.percentile(pct) for pct in pcts}

    def value(self, aggregation: str) -> float:
        if aggregation.startswith("p(") and aggregation.endswith(")"):
            return self.percentile(float(aggregation[2:-1]))

        values: dict[str, Callable[[], float]] = {
            "avg": lambda: self.mean,
            "min": lambda: self.min,
            "max": lambda: self.max,
            "med": lambda: self.med,
            "count": lambda: float(self.count),
        }
        if aggregation not in values:
            raise KeyError(f"Trend metric {self.name!r} has no '{aggregation}' aggregation")
        return float(values[aggregation]())


@dataclass(frozen=True)
class CounterSnapshot:
    """Running total of a :class:`Counter` plus its per-second rate."""

    kind: ClassVar[str] = "counter"

    name: str
    count: int
    elapsed: float = 0.0

    @property
    def rate(self) -> float:
        return self.count / self.elapsed if self.elapsed > 0 else 0.0

    def value(self, aggregation: str) -> float:
        if aggregation == "count":
            return float(self.count)
        if aggregation == "rate":
            return self.rate
        raise KeyError(f"Counter metric {self.name!r} has no '{aggregation}' aggregation")


MetricSnapshot = RateSnapshot | TrendSnapshot | CounterSnapshot


# =====================================================================
# Metric sinks
# =====================================================================


class Metric:
    """Base class holding the name and the per-metric lock."""

    kind: ClassVar[str] = ""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def _check_merge(self, other: "Metric") -> None:
        if type(other) is not type(self):
            raise MetricTypeError(
                f"Cannot merge {other.kind} metric {other.name!r} into {self.kind} {self.name!r}"
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Rate(Metric):
    """Ratio of truthy samples, e.g. success or failure rates."""

    kind = "rate"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._passes = 0
        self._total = 0

    def add(self, success: bool) -> None:
        with self._lock:
            self._total += 1
            if success:
                self._passes += 1

    def snapshot(self) -> RateSnapshot:
        with self._lock:
            return RateSnapshot(name=self.name, passes=self._passes, total=self._total)

    def merge(self, other: "Rate") -> None:
        self._check_merge(other)
        theirs = other.snapshot()
        with self._lock:
            self._passes += theirs.passes
            self._total += theirs.total


class Trend(Metric):
    """
    Distribution of observed values (typically latencies in ms).

    Args:
        name: Metric name.
        max_samples: Bound on retained raw samples; ``None`` keeps all.
    """

    kind = "trend"

    def __init__(self, name: str, max_samples: int | None = DEFAULT_SAMPLE_BUFFER) -> None:
        super().__init__(name)
        self._samples: deque[float] = deque(maxlen=max_samples)
        self._count = 0
        self._sum = 0.0
        self._min = math.inf
        self._max = -math.inf

    def add(self, value: float) -> None:
        value = float(value)
        with self._lock:
            self._samples.append(value)
            self._count += 1
            self._sum += value
            if value < self._min:
                self._min = value
            if value > self._max:
                self._max = value

    def snapshot(self) -> TrendSnapshot:
        with self._lock:
            samples = list(self._samples)
            count, total, low, high = self._count, self._sum, self._min, self._max

        if count == 0:
            return TrendSnapshot(name=self.name, count=0, total=0.0, min=0.0, max=0.0)
        samples.sort()
        return TrendSnapshot(
            name=self.name,
            count=count,
            total=total,
            min=low,
            max=high,
            samples=tuple(samples),
        )

    def merge(self, other: "Trend") -> None:
        self._check_merge(other)
        theirs = other.snapshot()
        if theirs.count == 0:
            return
        with self._lock:
            self._samples.extend(theirs.samples)
            self._count += theirs.count
            self._sum += theirs.total
            self._min = min(self._min, theirs.min)
            self._max = max(self._max, theirs.max)


class Counter(Metric):
    """Monotonic running sum."""

    kind = "counter"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._count = 0

    def add(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError(f"Counter {self.name!r} is monotonic; cannot add {n}")
        with self._lock:
            self._count += n

    def snapshot(self, elapsed: float = 0.0) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(name=self.name, count=self._count, elapsed=elapsed)

    def merge(self, other: "Counter") -> None:
        self._check_merge(other)
        theirs = other.snapshot()
        with self._lock:
            self._count += theirs.count


# =====================================================================
# Registry
# =====================================================================


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of every metric at one point in time."""

    metrics: Mapping[str, MetricSnapshot]
    elapsed: float = 0.0

    def get(self, name: str) -> MetricSnapshot | None:
        return self.metrics.get(name)

    def __getitem__(self, name: str) -> MetricSnapshot:
        return self.metrics[name]

    def __contains__(self, name: object) -> bool:
        return name in self.metrics

    def __iter__(self) -> Iterator[str]:
        return iter(self.metrics)

    def __len__(self) -> int:
        return len(self.metrics)


class MetricRegistry:
    """
    Named metrics created lazily on first write.

    Args:
        sample_buffer: Bound on raw samples retained per trend.
        clock: Monotonic clock used for counter rates.
    """

    def __init__(
        self,
        sample_buffer: int | None = DEFAULT_SAMPLE_BUFFER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if sample_buffer is not None and sample_buffer <= 0:
            raise ValueError("sample_buffer must be positive")
        self._sample_buffer = sample_buffer
        self._clock = clock
        self._lock = threading.Lock()
        self._metrics: dict[str, Metric] = {}
        self._started = clock()

    def start(self) -> None:
        """Restart the clock used for per-second counter rates."""
        self._started = self._clock()

    def _get_or_create(self, name: str, metric_type: type[Metric]) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            with self._lock:
                metric = self._metrics.get(name)
                if metric is None:
                    if metric_type is Trend:
                        metric = Trend(name, max_samples=self._sample_buffer)
                    else:
                        metric = metric_type(name)
                    self._metrics[name] = metric
        if type(metric) is not metric_type:
            raise MetricTypeError(
                f"Metric {name!r} is a {metric.kind}, not a {metric_type.kind}"
            )
        return metric

    def rate(self, name: str) -> Rate:
        return self._get_or_create(name, Rate)  # type: ignore[return-value]

    def trend(self, name: str) -> Trend:
        return self._get_or_create(name, Trend)  # type: ignore[return-value]

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)  # type: ignore[return-value]

    def get(self, name: str) -> Metric | None:
        return self._metrics.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._metrics)

    def snapshot(self) -> RegistrySnapshot:
        elapsed = self._clock() - self._started
        with self._lock:
            metrics = list(self._metrics.values())

        snapshots: dict[str, MetricSnapshot] = {}
        for metric in metrics:
            if isinstance(metric, Counter):
                snapshots[metric.name] = metric.snapshot(elapsed)
            else:
                snapshots[metric.name] = metric.snapshot()  # type: ignore[attr-defined]
        return RegistrySnapshot(metrics=MappingProxyType(snapshots), elapsed=elapsed)

    def merge(self, other: "MetricRegistry") -> None:
        """Fold every metric of ``other`` into this registry."""
        with other._lock:
            theirs = list(other._metrics.values())
        for metric in theirs:
            self._get_or_create(metric.name, type(metric)).merge(metric)  # type: ignore[attr-defined]

    def reset(self) -> None:
        """Drop all metrics; used between independent runs."""
        with self._lock:
            self._metrics.clear()
        self.start()
