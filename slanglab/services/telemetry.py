"""In-process counters and outbound-call samples behind ``GET /v1/ops/metrics``.

Values live in process memory only, so each API or worker process reports
its own view since start-up.
"""
from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
import math
import time
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def counter_key(name: str, labels: dict[str, str]) -> str:
    # gated_actions_total{capability=search,outcome=executed}
    if not labels:
        return name
    rendered = ",".join(f"{key}={labels[key]}" for key in sorted(labels))
    return f"{name}{{{rendered}}}"


def increment_counter(name: str, value: int = 1, **labels: str) -> None:
    _counters[counter_key(name, labels)] += value


def record_gated_action(capability: str, outcome: str) -> None:
    # outcome is executed, denied:<reason> or race_lost.
    increment_counter("gated_actions_total", capability=capability, outcome=outcome)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    _external_samples.append(
        ExternalCallSample(ts=time.time(), integration=integration, latency_ms=latency_ms, success=success)
    )


def external_call_stats(window_s: int) -> dict[str, dict[str, float | int]]:
    # Calls, failures and p95/max latency per integration inside the window.
    cutoff = time.time() - window_s
    grouped: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            grouped[sample.integration].append(sample)
    stats: dict[str, dict[str, float | int]] = {}
    for integration, samples in grouped.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        p95_index = max(0, math.ceil(0.95 * len(latencies)) - 1)
        stats[integration] = {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if not sample.success),
            "p95": latencies[p95_index],
            "max": latencies[-1],
        }
    return stats


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    _external_samples.clear()
    _counters.clear()
