"""Simple metrics library using only the Python standard library.

This module provides a minimal implementation of labelled counters
similar to Prometheus, but without any external dependencies.  Metrics
are collected in global objects and can be exported in the Prometheus
text exposition format.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple


class Metric:
    """Base class for all metrics."""

    def __init__(self, name: str, description: str, label_names: Iterable[str]):
        self.name = name
        self.description = description
        self.label_names = list(label_names)
        # register metric in global registry
        _METRIC_REGISTRY.append(self)

    def _label_tuple(self, labels: Dict[str, str]) -> Tuple[str, ...]:
        return tuple(str(labels.get(k, "")) for k in self.label_names)

    def _format_labels(self, label_values: Tuple[str, ...]) -> str:
        if not self.label_names:
            return ""
        pairs = [f'{name}="{value}"' for name, value in zip(self.label_names, label_values)]
        return "{" + ",".join(pairs) + "}"

    def to_prometheus(self) -> List[str]:
        """Return a list of strings in Prometheus exposition format."""
        raise NotImplementedError


class Counter(Metric):
    """Simple counter metric.  Call ``inc()`` to increment by 1.

    The ``inc`` method accepts keyword arguments matching the label
    names provided at construction time.  Example:

    ``STATE_TRANSITIONS_TOTAL.inc(source="MainMenu", target="Browsing")``
    """

    def __init__(self, name: str, description: str, label_names: Iterable[str]):
        super().__init__(name, description, label_names)
        self._values: Dict[Tuple[str, ...], int] = defaultdict(int)

    def inc(self, **labels: str) -> None:
        self._values[self._label_tuple(labels)] += 1

    def value(self, **labels: str) -> int:
        """Return the current count for the given label values."""
        return self._values.get(self._label_tuple(labels), 0)

    def to_prometheus(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} counter"]
        for label_values, value in self._values.items():
            label_str = self._format_labels(label_values)
            lines.append(f"{self.name}{label_str} {value}")
        return lines


_METRIC_REGISTRY: List[Metric] = []


def generate_metrics_text() -> str:
    """Generate the text representation of all registered metrics."""
    lines: List[str] = []
    for metric in _METRIC_REGISTRY:
        lines.extend(metric.to_prometheus())
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Global metrics used by the storefront application.
# -----------------------------------------------------------------------------

STATE_TRANSITIONS_TOTAL = Counter(
    name="state_transitions_total",
    description="Total number of navigation state transitions",
    label_names=["source", "target"],
)

AUTHORIZATION_FAILURES_TOTAL = Counter(
    name="authorization_failures_total",
    description="Number of times a state refused entry because of the session role",
    label_names=["state"],
)

CHECKOUT_OUTCOMES_TOTAL = Counter(
    name="checkout_outcomes_total",
    description="Outcome of order commits and confirmations, labelled by outcome",
    label_names=["outcome"],
)

RECONCILIATION_PROBLEMS_TOTAL = Counter(
    name="reconciliation_problems_total",
    description="Problems found while reconciling orders against inventory",
    label_names=["kind"],
)
