"""Lightweight metrics sink for stream and hub instrumentation."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class MetricsSink:
    """Collects counters and gauges for reporting."""

    namespace: str = "deribit_stream"
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def incr(self, name: str, value: int = 1) -> None:
        """Increment a counter."""

        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""

        with self._lock:
            self.gauges[name] = float(value)

    def export(self) -> Dict[str, float | int]:
        """Return a merged view of all current metrics."""

        with self._lock:
            snapshot = {**self.counters, **self.gauges}
        return snapshot

    def render_prometheus(self) -> str:
        """Render the current values in the Prometheus text exposition format."""

        with self._lock:
            counters = sorted(self.counters.items())
            gauges = sorted(self.gauges.items())
        lines = []
        for name, value in counters:
            metric = f"{self.namespace}_{name}_total"
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {int(value)}")
        for name, value in gauges:
            metric = f"{self.namespace}_{name}"
            lines.append(f"# TYPE {metric} gauge")
            lines.append(f"{metric} {float(value)}")
        return "\n".join(lines) + "\n"


__all__ = ["MetricsSink"]
