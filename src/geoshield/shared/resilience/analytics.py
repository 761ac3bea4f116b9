"""Call analytics: per-provider counts, latency percentiles and an error log."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

import structlog

from geoshield.shared.clock import Clock, SystemClock, isoformat

logger = structlog.get_logger(__name__)

_LATENCY_SAMPLES = 100
_ERROR_LOG_SIZE = 100


@dataclass
class _ServiceCounters:
    calls: int = 0
    errors: int = 0
    skipped: int = 0
    last_call_at: float | None = None
    latencies: deque[float] = field(default_factory=lambda: deque(maxlen=_LATENCY_SAMPLES))


class CallAnalytics:
    """Session-scoped usage analytics for provider calls.

    Complements ``HealthTracker``: health decides whether a provider may be
    used, analytics describes how it has been used since the session began.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._services: dict[str, _ServiceCounters] = {}
        self._errors: deque[dict[str, Any]] = deque(maxlen=_ERROR_LOG_SIZE)
        self._session_start = self._clock.now()

    # ── Recording ────────────────────────────────────────────
    def record_success(self, service: str, operation: str, latency: float) -> None:
        counters = self._touch(service)
        counters.calls += 1
        counters.latencies.append(max(0.0, latency))

    def record_failure(
        self,
        service: str,
        operation: str,
        latency: float,
        error: BaseException | str,
    ) -> None:
        counters = self._touch(service)
        counters.calls += 1
        counters.errors += 1
        self._errors.append(
            {
                "service_name": service,
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__ if isinstance(error, BaseException) else "str",
                "latency_ms": round(latency * 1000, 1),
                "timestamp": isoformat(self._clock.now()),
            }
        )

    def record_skip(self, service: str, reason: str) -> None:
        """A call that was never attempted (unhealthy or over budget)."""
        self._touch(service).skipped += 1
        logger.debug("analytics_skip_recorded", service=service, reason=reason)

    # ── Views ────────────────────────────────────────────────
    def service_stats(self, service: str) -> dict[str, Any]:
        counters = self._services.get(service) or _ServiceCounters()
        latencies = counters.latencies
        return {
            "service_name": service,
            "total_calls": counters.calls,
            "error_count": counters.errors,
            "success_count": counters.calls - counters.errors,
            "skipped": counters.skipped,
            "success_rate": (
                (counters.calls - counters.errors) / counters.calls if counters.calls else 1.0
            ),
            "average_response_time_ms": (
                round(sum(latencies) / len(latencies) * 1000, 2) if latencies else 0.0
            ),
            "last_call_at": isoformat(counters.last_call_at),
        }

    def summary(self) -> dict[str, Any]:
        total = sum(c.calls for c in self._services.values())
        errors = sum(c.errors for c in self._services.values())
        by_service: dict[str, int] = {}
        for entry in self._errors:
            by_service[entry["service_name"]] = by_service.get(entry["service_name"], 0) + 1
        return {
            "session_started_at": isoformat(self._session_start),
            "session_duration_s": round(self._clock.now() - self._session_start, 3),
            "total_requests": total,
            "total_errors": errors,
            "total_skipped": sum(c.skipped for c in self._services.values()),
            "success_rate": (total - errors) / total if total else 1.0,
            "error_rate": errors / total if total else 0.0,
            "services": [self.service_stats(name) for name in sorted(self._services)],
            "recent_errors": self.error_log(10),
            "errors_by_service": by_service,
        }

    def performance(self) -> dict[str, dict[str, Any]]:
        """Latency percentiles per service that has at least one success."""
        metrics: dict[str, dict[str, Any]] = {}
        for name in sorted(self._services):
            counters = self._services[name]
            if not counters.latencies:
                continue
            ordered = sorted(counters.latencies)
            metrics[name] = {
                "average_response_time_ms": round(sum(ordered) / len(ordered) * 1000, 2),
                "p50_ms": _percentile_ms(ordered, 0.50),
                "p95_ms": _percentile_ms(ordered, 0.95),
                "p99_ms": _percentile_ms(ordered, 0.99),
                "min_ms": round(ordered[0] * 1000, 2),
                "max_ms": round(ordered[-1] * 1000, 2),
                "total_requests": counters.calls,
                "error_rate_pct": round(counters.errors / counters.calls * 100, 2),
                "requests_per_minute": self._requests_per_minute(counters),
            }
        return metrics

    def error_log(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Most recent errors, oldest first."""
        entries = list(self._errors)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def reset(self) -> None:
        self._services.clear()
        self._errors.clear()
        self._session_start = self._clock.now()
        logger.info("analytics_reset")

    # ── Internals ────────────────────────────────────────────
    def _touch(self, service: str) -> _ServiceCounters:
        counters = self._services.setdefault(service, _ServiceCounters())
        counters.last_call_at = self._clock.now()
        return counters

    def _requests_per_minute(self, counters: _ServiceCounters) -> float:
        minutes = (self._clock.now() - self._session_start) / 60.0
        if minutes < 1.0:
            return 0.0
        return round(counters.calls / minutes, 2)


def _percentile_ms(ordered: list[float], p: float) -> float:
    idx = min(int(len(ordered) * p), len(ordered) - 1)
    return round(ordered[idx] * 1000, 2)
