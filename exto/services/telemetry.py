"""In-process request, provider-call and counter samples.

Samples live in bounded ring buffers per worker process; the ops metrics
route reads them back over a trailing time window.
"""
from __future__ import annotations

import math
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Iterable, NamedTuple


class _Sample(NamedTuple):
    at: float
    key: str
    latency_ms: float
    ok: bool


def _percentile_95(latencies: list[float]) -> float:
    ordered = sorted(latencies)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


@dataclass
class _Ring:
    capacity: int

    def __post_init__(self) -> None:
        self._items: deque[_Sample] = deque(maxlen=self.capacity)

    def add(self, key: str, latency_ms: float, ok: bool) -> None:
        self._items.append(_Sample(time.time(), key, latency_ms, ok))

    def since(self, window_s: int) -> Iterable[_Sample]:
        cutoff = time.time() - window_s
        return (sample for sample in self._items if sample.at >= cutoff)


_requests = _Ring(capacity=20000)
_provider_calls = _Ring(capacity=10000)
_counters: Counter[str] = Counter()


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _requests.add(path, latency_ms, status_code < 500)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # integration is "llm", "stripe" or an identity provider name.
    _provider_calls.add(integration, latency_ms, success)


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def p95_latency(window_s: int, *, path_prefix: str | None = None) -> float | None:
    latencies = [
        sample.latency_ms
        for sample in _requests.since(window_s)
        if path_prefix is None or sample.key.startswith(path_prefix)
    ]
    return _percentile_95(latencies) if latencies else None


def external_call_stats(window_s: int) -> dict[str, dict[str, float | int | None]]:
    grouped: dict[str, list[_Sample]] = {}
    for sample in _provider_calls.since(window_s):
        grouped.setdefault(sample.key, []).append(sample)
    stats: dict[str, dict[str, float | int | None]] = {}
    for integration, samples in grouped.items():
        latencies = [sample.latency_ms for sample in samples]
        stats[integration] = {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if not sample.ok),
            "p95": _percentile_95(latencies),
            "max": max(latencies),
        }
    return stats


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)
