"""In-process counters rendered in the Prometheus text format."""

from __future__ import annotations

import re
import threading
from typing import Dict, List, Optional, Sequence, Tuple

LabelValues = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class Counter:
    """Monotonic counter with a fixed label set."""

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = ""):
        self.name = name
        self.label_names = tuple(label_names)
        self.help_text = help_text
        self._values: Dict[LabelValues, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelValues:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def render(self) -> List[str]:
        lines = []
        if self.help_text:
            lines.append(f"# HELP {self.name} {self.help_text}")
        lines.append(f"# TYPE {self.name} counter")
        with self._lock:
            samples = sorted(self._values.items())
        for values, total in samples:
            if self.label_names:
                pairs = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, values))
                lines.append(f"{self.name}{{{pairs}}} {float(total)}")
            else:
                lines.append(f"{self.name} {float(total)}")
        return lines


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        with self._lock:
            existing = self._counters.get(name)
            if existing is None:
                existing = self._counters[name] = Counter(name, label_names, help_text)
            return existing

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.render())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            counters = list(self._counters.values())
        for counter in counters:
            counter.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", ["method", "path", "status"], "HTTP requests by route and status"
)
webhook_events_total = METRICS.counter(
    "webhook_events_total", ["event_type", "outcome"], "Authenticated webhook events by dispatch outcome"
)
webhook_rejections_total = METRICS.counter(
    "webhook_rejections_total", ["reason"], "Webhook deliveries rejected before dispatch"
)
checkout_requests_total = METRICS.counter(
    "checkout_requests_total", ["outcome"], "Checkout attempts by outcome"
)

# Segments that look like ids: uuids/hex, numbers, or prefixed ids like cus_123
_ID_SEGMENT = re.compile(r"^(?:\d+|[0-9a-fA-F-]{8,}|[a-z]+_[A-Za-z0-9_]+)$")


def normalize_path(path: str) -> str:
    """Collapse id-like segments of an unmatched path to :id."""
    segments = [":id" if _ID_SEGMENT.match(s) else s for s in path.split("/") if s]
    return "/" + "/".join(segments)
