"""Per-provider health tracker.

Keeps one immutable ``HealthRecord`` per provider name and replaces it on
every observation. Unknown providers are reported healthy; nothing here
ever raises.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from geoshield.shared.clock import Clock, SystemClock
from geoshield.shared.resilience.types import (
    DEFAULT_HEALTH_POLICY,
    HealthPolicy,
    HealthRecord,
    ServiceStatus,
)

logger = structlog.get_logger(__name__)


class HealthTracker:
    """Rolling success/failure/latency statistics keyed by provider name."""

    def __init__(
        self,
        *,
        policy: HealthPolicy = DEFAULT_HEALTH_POLICY,
        clock: Clock | None = None,
    ) -> None:
        self._policy = policy
        self._clock = clock or SystemClock()
        self._records: dict[str, HealthRecord] = {}

    @property
    def policy(self) -> HealthPolicy:
        return self._policy

    # ── Recording ────────────────────────────────────────────
    def record_success(self, service: str, response_time: float) -> HealthRecord:
        now = self._clock.now()
        before = self.health(service)
        after = before.with_success(response_time, now, self._policy)
        self._store(before, after)
        return after

    def record_failure(
        self,
        service: str,
        response_time: float = 0.0,
        reason: str = "unknown error",
    ) -> HealthRecord:
        # Failed calls do not feed the latency average.
        now = self._clock.now()
        before = self.health(service)
        after = before.with_failure(reason, now, self._policy)
        self._store(before, after)
        logger.debug(
            "provider_failure_recorded",
            service=service,
            reason=reason,
            response_time_s=round(response_time, 3),
            failure_count=after.failure_count,
        )
        return after

    # ── Queries ──────────────────────────────────────────────
    def health(self, service: str) -> HealthRecord:
        """Current snapshot, or an optimistic default that is not stored."""
        record = self._records.get(service)
        if record is None:
            return HealthRecord.optimistic(service, self._clock.now())
        return record

    def all_health(self) -> dict[str, HealthRecord]:
        return dict(self._records)

    def is_healthy(self, service: str) -> bool:
        record = self.health(service)
        return (
            record.is_available
            and record.success_rate >= self._policy.healthy_success_rate
            and record.average_response_time < self._policy.max_response_time_s
        )

    def health_score(self, record: HealthRecord) -> float:
        """0-100 blend of success rate (0.7) and normalised latency (0.3)."""
        latency_factor = max(
            0.0, 1.0 - record.average_response_time / self._policy.max_response_time_s
        )
        score = 100.0 * (0.7 * record.success_rate + 0.3 * latency_factor)
        return max(0.0, min(100.0, score))

    def status_label(self, record: HealthRecord) -> ServiceStatus:
        if not record.is_available:
            return ServiceStatus.UNAVAILABLE
        if record.success_rate > 0.8:
            return ServiceStatus.HEALTHY
        if record.success_rate > 0.5:
            return ServiceStatus.DEGRADED
        return ServiceStatus.POOR

    def overall_score(self) -> float:
        if not self._records:
            return 0.0
        total = sum(
            r.success_rate * 100.0 if r.is_available else 0.0
            for r in self._records.values()
        )
        return total / len(self._records)

    def unhealthy_services(self) -> list[str]:
        return sorted(name for name in self._records if not self.is_healthy(name))

    def best_service(self, candidates: Iterable[str]) -> str | None:
        """Highest-scoring available candidate; ties keep the earlier one."""
        best: str | None = None
        best_score = -1.0
        for name in candidates:
            record = self.health(name)
            if not record.is_available:
                continue
            score = self.health_score(record)
            if score > best_score:
                best, best_score = name, score
        return best

    def allows_attempt(self, service: str) -> bool:
        """Whether a caller may try this provider right now.

        An unavailable provider is skipped until its last failure is older
        than the recovery window; the next call after that is a probe whose
        outcome decides whether it stays eligible.
        """
        record = self.health(service)
        if record.manual_override is not None:
            return record.manual_override
        if record.is_available or record.last_failure_at is None:
            return True
        return self._clock.now() - record.last_failure_at >= self._policy.recovery_window_s

    # ── Operator overrides ───────────────────────────────────
    def set_manual_availability(self, service: str, available: bool) -> HealthRecord:
        before = self.health(service)
        after = before.with_override(available, self._clock.now(), self._policy)
        self._records[service] = after
        logger.info("provider_availability_overridden", service=service, available=available)
        return after

    def clear_manual_availability(self, service: str) -> HealthRecord:
        before = self.health(service)
        after = before.with_override(None, self._clock.now(), self._policy)
        self._records[service] = after
        logger.info("provider_availability_override_cleared", service=service)
        return after

    def reset(self, service: str) -> None:
        if self._records.pop(service, None) is not None:
            logger.info("provider_health_reset", service=service)

    def reset_all(self) -> None:
        self._records.clear()
        logger.info("provider_health_reset_all")

    # ── Internals ────────────────────────────────────────────
    def _store(self, before: HealthRecord, after: HealthRecord) -> None:
        self._records[after.service_name] = after
        if before.is_available and not after.is_available:
            logger.warning(
                "provider_marked_unavailable",
                service=after.service_name,
                failure_count=after.failure_count,
                success_rate=round(after.success_rate, 4),
                last_error=after.last_error,
            )
        elif not before.is_available and after.is_available:
            logger.info("provider_recovered", service=after.service_name)
