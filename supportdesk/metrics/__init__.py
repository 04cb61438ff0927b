"""In-process metrics for the support desk."""
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Create every known metric up front so exports list them before first use."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        factory = {"counter": target.counter, "distribution": target.distribution}.get(definition.metric_type)
        if factory is None:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
        factory(definition.name, description=definition.description, label_names=definition.label_names)
    return target


register_default_metrics()

__all__ = [
    "MetricDefinition",
    "MetricsRegistry",
    "metrics_registry",
    "register_default_metrics",
]
