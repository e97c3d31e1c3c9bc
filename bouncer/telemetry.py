"""
Process-local admission metrics.

Intent:
    Give tests and the `/healthz` endpoint a view of admission outcomes,
    role-cache rebuilds and event-queue pressure without an exporter.

Series:
    Every series belongs to one of the names declared in `COUNTERS` or
    `GAUGES`; recording an undeclared name raises ValueError so typos fail
    in tests instead of creating a silent new series.
"""
from __future__ import annotations

from threading import Lock
from typing import Dict, FrozenSet, Tuple

COUNTERS: FrozenSet[str] = frozenset({
    "admissions_total",            # outcome=admitted|partial|deferred|bad_key|...
    "role_cache_rebuilds_total",   # status=ok|failed
    "events_dropped_total",        # kind=<event class>
})
GAUGES: FrozenSet[str] = frozenset({
    "event_queue_depth",
})

Labels = Tuple[Tuple[str, str], ...]


class _Series:
    """Values of one metric kind, keyed by (name, sorted labels)."""

    def __init__(self, kind: str, names: FrozenSet[str]) -> None:
        self.kind = kind
        self.names = names
        self.values: Dict[str, Dict[Labels, float]] = {}

    def key(self, name: str, labels: Dict[str, str]) -> Labels:
        if name not in self.names:
            raise ValueError(f"unknown {self.kind}: {name}")
        return tuple(sorted((k, str(v)) for k, v in labels.items()))


_lock = Lock()
_counters = _Series("counter", COUNTERS)
_gauges = _Series("gauge", GAUGES)


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    key = _counters.key(name, labels)
    with _lock:
        series = _counters.values.setdefault(name, {})
        series[key] = series.get(key, 0) + amount


def set_gauge(name: str, value: float, **labels: str) -> None:
    key = _gauges.key(name, labels)
    with _lock:
        _gauges.values.setdefault(name, {})[key] = float(value)


def counter_value(name: str, **labels: str) -> int:
    """Return a single counter value (0 when never incremented)."""
    key = _counters.key(name, labels)
    with _lock:
        return int(_counters.values.get(name, {}).get(key, 0))


def summary() -> dict[str, dict[str, float]]:
    """Flatten all series into {name: {"k=v,k2=v2": value}} for JSON output."""
    out: dict[str, dict[str, float]] = {}
    with _lock:
        for kind in (_counters, _gauges):
            for name, series in kind.values.items():
                out[name] = {",".join(f"{k}={v}" for k, v in key): value for key, value in series.items()}
    return out


def reset_for_tests() -> None:
    with _lock:
        _counters.values.clear()
        _gauges.values.clear()
