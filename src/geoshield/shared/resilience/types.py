"""Core types for the geodata resilience layer.

Records are immutable snapshots; every state change goes through a pure
transition (``record.with_success(...)``) so the rolling-window maths can
be tested without any tracker around it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from geoshield.shared.clock import isoformat, to_datetime


class ServiceStatus(str, enum.Enum):
    """Human-readable health band of a provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    POOR = "poor"
    UNAVAILABLE = "unavailable"


class AlertType(str, enum.Enum):
    HIGH_ERROR_RATE = "high_error_rate"
    UNHEALTHY_SERVICE = "unhealthy_service"
    SLOW_RESPONSE = "slow_response"
    LOW_SYSTEM_HEALTH = "low_system_health"


class AlertSeverity(str, enum.Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class HealthPolicy:
    """Thresholds that turn raw outcomes into availability.

    Attributes:
        recovery_window_s:    Failures older than this stop counting.
        failure_ceiling:      Recent failures that make a provider unavailable.
        min_success_rate:     Recent success rate below which it is unavailable.
        failure_streak:       Trailing run of failures that makes it unavailable.
        sample_size:          Latencies / outcomes kept for rolling maths.
        healthy_success_rate: ``is_healthy`` success-rate floor.
        max_response_time_s:  ``is_healthy`` latency ceiling; also the point at
                              which normalised latency saturates to 0.
    """

    recovery_window_s: float = 300.0
    failure_ceiling: int = 5
    min_success_rate: float = 0.5
    failure_streak: int = 5
    sample_size: int = 100
    healthy_success_rate: float = 0.80
    max_response_time_s: float = 10.0


DEFAULT_HEALTH_POLICY = HealthPolicy()


@dataclass(frozen=True)
class HealthRecord:
    """Read-only snapshot of one provider's health."""

    service_name: str
    is_available: bool = True
    success_rate: float = 1.0
    failure_count: int = 0
    total_requests: int = 0
    successful_requests: int = 0
    average_response_time: float = 0.0
    last_failure_at: float | None = None
    last_checked_at: float = 0.0
    manual_override: bool | None = None
    last_error: str | None = None
    latencies: tuple[float, ...] = field(default=(), repr=False)
    outcomes: tuple[tuple[float, bool], ...] = field(default=(), repr=False)

    @classmethod
    def optimistic(cls, service_name: str, now: float) -> HealthRecord:
        return cls(service_name=service_name, last_checked_at=now)

    # ── Transitions ──────────────────────────────────────────
    def with_success(
        self,
        response_time: float,
        now: float,
        policy: HealthPolicy = DEFAULT_HEALTH_POLICY,
    ) -> HealthRecord:
        latencies = (self.latencies + (max(0.0, response_time),))[-policy.sample_size :]
        outcomes = (self.outcomes + ((now, True),))[-policy.sample_size :]
        total = self.total_requests + 1
        successes = self.successful_requests + 1
        return replace(
            self,
            total_requests=total,
            successful_requests=successes,
            success_rate=successes / total,
            average_response_time=sum(latencies) / len(latencies),
            latencies=latencies,
            outcomes=outcomes,
            last_checked_at=now,
            is_available=self._resolve(outcomes, now, policy),
        )

    def with_failure(
        self,
        reason: str,
        now: float,
        policy: HealthPolicy = DEFAULT_HEALTH_POLICY,
    ) -> HealthRecord:
        outcomes = (self.outcomes + ((now, False),))[-policy.sample_size :]
        total = self.total_requests + 1
        return replace(
            self,
            total_requests=total,
            failure_count=self.failure_count + 1,
            success_rate=self.successful_requests / total,
            outcomes=outcomes,
            last_failure_at=now,
            last_checked_at=now,
            last_error=reason,
            is_available=self._resolve(outcomes, now, policy),
        )

    def with_override(
        self,
        available: bool | None,
        now: float,
        policy: HealthPolicy = DEFAULT_HEALTH_POLICY,
    ) -> HealthRecord:
        record = replace(self, manual_override=available, last_checked_at=now)
        return replace(record, is_available=record._resolve(record.outcomes, now, policy))

    def _resolve(
        self,
        outcomes: tuple[tuple[float, bool], ...],
        now: float,
        policy: HealthPolicy,
    ) -> bool:
        if self.manual_override is not None:
            return self.manual_override
        return derive_availability(outcomes, now, policy)

    # ── Views ────────────────────────────────────────────────
    def recent_failures(self, now: float, policy: HealthPolicy = DEFAULT_HEALTH_POLICY) -> int:
        return sum(
            1
            for ts, ok in self.outcomes
            if not ok and now - ts < policy.recovery_window_s
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "is_available": self.is_available,
            "success_rate": round(self.success_rate, 4),
            "failure_count": self.failure_count,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "average_response_time_ms": round(self.average_response_time * 1000, 2),
            "last_failure_at": isoformat(self.last_failure_at),
            "last_checked_at": isoformat(self.last_checked_at),
            "manual_override": self.manual_override,
            "last_error": self.last_error,
        }


def derive_availability(
    outcomes: tuple[tuple[float, bool], ...],
    now: float,
    policy: HealthPolicy = DEFAULT_HEALTH_POLICY,
) -> bool:
    """Availability from timestamped outcomes, ignoring any manual override.

    Unavailable when recent failures reach the ceiling, when the recent
    success rate drops below the floor, or when the trailing
    ``failure_streak`` outcomes all failed. "Recent" means inside the
    recovery window, so a provider becomes eligible again once its failures
    age out.
    """
    recent = [ok for ts, ok in outcomes if now - ts < policy.recovery_window_s]
    failures = recent.count(False)
    if failures >= policy.failure_ceiling:
        return False
    if recent and (len(recent) - failures) / len(recent) < policy.min_success_rate:
        return False
    tail = outcomes[-policy.failure_streak :]
    if len(tail) >= policy.failure_streak and not any(ok for _, ok in tail):
        return False
    return True


# ═══════════════════════════════════════════════════════════════
#  Usage
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RateLimit:
    """A request budget of ``limit`` calls per ``window_seconds``.

    ``daily_reset`` windows are also cleared when the UTC calendar day
    changes, so a long idle period cannot leave yesterday's calls counted.
    """

    limit: int
    window_seconds: float
    daily_reset: bool = False

    @classmethod
    def per_second(cls, limit: int) -> RateLimit:
        return cls(limit, 1.0)

    @classmethod
    def per_minute(cls, limit: int) -> RateLimit:
        return cls(limit, 60.0)

    @classmethod
    def per_day(cls, limit: int) -> RateLimit:
        return cls(limit, 86_400.0, daily_reset=True)


@dataclass(frozen=True)
class UsageWindow:
    """Time-ordered request instants for one provider."""

    limit: int
    window_seconds: float
    timestamps: tuple[float, ...] = ()
    daily_reset: bool = False
    day: date | None = None

    @classmethod
    def for_limit(cls, rate: RateLimit) -> UsageWindow:
        return cls(
            limit=rate.limit,
            window_seconds=rate.window_seconds,
            daily_reset=rate.daily_reset,
        )

    def pruned(self, now: float) -> UsageWindow:
        cutoff = now - self.window_seconds
        kept = tuple(ts for ts in self.timestamps if ts > cutoff)
        day = self.day
        if self.daily_reset:
            today = to_datetime(now).date()
            if day is not None and today != day:
                kept = ()
            day = today
        if kept == self.timestamps and day == self.day:
            return self
        return replace(self, timestamps=kept, day=day)

    def with_call(self, now: float) -> UsageWindow:
        window = self.pruned(now)
        return replace(window, timestamps=window.timestamps + (now,))

    @property
    def count(self) -> int:
        return len(self.timestamps)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def is_throttled(self) -> bool:
        return self.count >= self.limit

    def reset_eta(self, now: float) -> float:
        """Seconds until the oldest counted call ages out."""
        if not self.timestamps:
            return 0.0
        return max(0.0, self.timestamps[0] + self.window_seconds - now)


@dataclass(frozen=True)
class UsageStatus:
    service: str
    limit: int | None
    window_seconds: float | None
    current_usage: int
    remaining: int | None
    reset_eta: float
    is_throttled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "current_usage": self.current_usage,
            "remaining": self.remaining,
            "reset_eta_s": round(self.reset_eta, 3),
            "is_throttled": self.is_throttled,
        }


# ═══════════════════════════════════════════════════════════════
#  Alerts
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Alert:
    """A threshold breach found by one evaluation tick. Never persisted alone."""

    type: AlertType
    severity: AlertSeverity
    message: str
    threshold: float
    current_value: float
    timestamp: float
    service_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "threshold": self.threshold,
            "current_value": round(self.current_value, 2),
            "timestamp": isoformat(self.timestamp),
            "service_name": self.service_name,
        }
