from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Callable, Dict, Iterable, Iterator, Mapping, TypeVar

from .base import CounterMetric, DistributionMetric, Metric, track_duration

M = TypeVar("M", bound=Metric)


class MetricsRegistry:
    """Process-wide lookup of metrics by name; metrics are created on first use."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, kind: type[M], factory: Callable[[], M]) -> M:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = factory()
        if not isinstance(metric, kind):
            raise TypeError(f"Metric '{name}' is already registered as a {metric.kind}")
        return metric

    def counter(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> CounterMetric:
        return self._get_or_create(
            name,
            CounterMetric,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )

    def distribution(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> DistributionMetric:
        return self._get_or_create(
            name,
            DistributionMetric,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
        )

    @contextmanager
    def time_distribution(
        self, name: str, *, labels: Mapping[str, str] | None = None
    ) -> Iterator[None]:
        with track_duration(self.distribution(name), labels=labels):
            yield

    def export(self) -> Dict[str, Dict[str, object]]:
        """JSON friendly view of every series, labels joined as ``name=value`` pairs."""

        with self._lock:
            metrics = list(self._metrics.values())
        exported: Dict[str, Dict[str, object]] = {}
        for metric in metrics:
            exported[metric.name] = {
                "type": metric.kind,
                "series": {
                    ",".join(f"{label}={value}" for label, value in zip(metric.label_names, key)): values
                    for key, values in metric.series().items()
                },
            }
        return exported
