"""Usage tracker: per-provider request budgets.

Sliding-window counters pruned lazily on every call, so budgets
self-replenish without a background timer. Daily windows are also
cleared on UTC calendar-day change.
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from geoshield.shared.clock import Clock, SystemClock
from geoshield.shared.resilience.types import RateLimit, UsageStatus, UsageWindow

logger = structlog.get_logger(__name__)


DEFAULT_RATE_LIMITS: dict[str, RateLimit] = {
    "nominatim": RateLimit.per_second(1),
    "photon": RateLimit.per_second(1),
    "openrouteservice": RateLimit.per_minute(40),
    "openrouteservice_daily": RateLimit.per_day(2000),
    "osrm": RateLimit.per_second(1),
    "osm_tiles": RateLimit.per_second(2),
    "tile_mirror": RateLimit.per_second(2),
}


class UsageTracker:
    """Answers "may I call now?" and "how many calls remain?" per provider."""

    def __init__(
        self,
        limits: Mapping[str, RateLimit] | None = None,
        *,
        clock: Clock | None = None,
        warning_threshold: float = 0.90,
    ) -> None:
        self._clock = clock or SystemClock()
        self._warning_thr = warning_threshold
        self._windows: dict[str, UsageWindow] = {}
        self._warned: set[str] = set()
        for service, rate in (limits if limits is not None else DEFAULT_RATE_LIMITS).items():
            self.configure(service, rate)

    def configure(self, service: str, rate: RateLimit) -> None:
        """Install or replace a budget; any recorded calls are dropped."""
        if rate.limit <= 0 or rate.window_seconds <= 0:
            raise ValueError(f"Invalid rate limit for {service}: {rate}")
        self._windows[service] = UsageWindow.for_limit(rate)
        self._warned.discard(service)

    @property
    def services(self) -> list[str]:
        return sorted(self._windows)

    # ── Admission ────────────────────────────────────────────
    def can_proceed(self, service: str) -> bool:
        window = self._prune(service)
        if window is None:
            return True
        if window.is_throttled:
            logger.debug(
                "usage_limit_reached",
                service=service,
                current=window.count,
                limit=window.limit,
            )
            return False
        return True

    def record_call(self, service: str) -> None:
        window = self._windows.get(service)
        if window is None:
            return
        window = window.with_call(self._clock.now())
        self._windows[service] = window
        self._check_warning(service, window)

    def try_acquire(self, service: str) -> bool:
        """Check-and-record in one step."""
        if not self.can_proceed(service):
            return False
        self.record_call(service)
        return True

    # ── Introspection ────────────────────────────────────────
    def remaining(self, service: str) -> int | None:
        window = self._prune(service)
        return None if window is None else window.remaining

    def status(self, service: str) -> UsageStatus:
        window = self._prune(service)
        if window is None:
            return UsageStatus(
                service=service,
                limit=None,
                window_seconds=None,
                current_usage=0,
                remaining=None,
                reset_eta=0.0,
                is_throttled=False,
            )
        return UsageStatus(
            service=service,
            limit=window.limit,
            window_seconds=window.window_seconds,
            current_usage=window.count,
            remaining=window.remaining,
            reset_eta=window.reset_eta(self._clock.now()),
            is_throttled=window.is_throttled,
        )

    def all_status(self) -> dict[str, UsageStatus]:
        return {service: self.status(service) for service in sorted(self._windows)}

    def reset(self, service: str | None = None) -> None:
        """Forget recorded calls for one service, or for all of them."""
        targets = [service] if service is not None else list(self._windows)
        for name in targets:
            window = self._windows.get(name)
            if window is None:
                continue
            self._windows[name] = UsageWindow(
                limit=window.limit,
                window_seconds=window.window_seconds,
                daily_reset=window.daily_reset,
            )
            self._warned.discard(name)
        logger.info("usage_reset", service=service or "*")

    # ── Internals ────────────────────────────────────────────
    def _prune(self, service: str) -> UsageWindow | None:
        window = self._windows.get(service)
        if window is None:
            return None
        pruned = window.pruned(self._clock.now())
        if pruned is not window:
            self._windows[service] = pruned
            if pruned.count / pruned.limit < self._warning_thr:
                self._warned.discard(service)
        return pruned

    def _check_warning(self, service: str, window: UsageWindow) -> None:
        if service in self._warned:
            return
        usage_pct = window.count / window.limit
        if usage_pct >= self._warning_thr:
            self._warned.add(service)
            logger.warning(
                "usage_warning",
                service=service,
                usage_pct=float(f"{(usage_pct * 100):.1f}"),
                requests_used=window.count,
                limit=window.limit,
            )
