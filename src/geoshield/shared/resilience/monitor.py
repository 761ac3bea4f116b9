"""Monitor coordinator: alerts, periodic reports and operator status.

Four independent background loops, each a cancellable asyncio task:

    report        snapshot health + usage + cache into a persisted report
    alert         recompute threshold alerts from scratch
    health_check  run registered provider probes into the HealthTracker
    cache_purge   sweep expired cache entries

Alerts carry no state between ticks; every tick recomputes them.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import orjson
import structlog

from geoshield.ports.outbound import DurableStorePort
from geoshield.shared.cache.store import CacheStore
from geoshield.shared.clock import Clock, SystemClock, isoformat
from geoshield.shared.observability.metrics import ACTIVE_ALERTS, OVERALL_HEALTH_SCORE
from geoshield.shared.resilience.analytics import CallAnalytics
from geoshield.shared.resilience.health import HealthTracker
from geoshield.shared.resilience.types import Alert, AlertSeverity, AlertType
from geoshield.shared.resilience.usage import UsageTracker

logger = structlog.get_logger(__name__)

REPORT_NAMESPACE = "monitor_reports"

Probe = Callable[[], Awaitable[Any]]
AlertListener = Callable[[list[Alert]], Any]


@dataclass(frozen=True)
class MonitorThresholds:
    """Alert and recommendation thresholds.

    Rates are fractions (0.10 == 10 %); scores are 0-100.
    """

    error_rate: float = 0.10
    response_time_s: float = 5.0
    health_score: float = 70.0
    recommend_cache_hit_rate: float = 0.70
    recommend_error_rate: float = 0.05
    recommend_health_score: float = 80.0


@dataclass(frozen=True)
class MonitorIntervals:
    report: float = 900.0
    alert: float = 60.0
    health_check: float = 300.0
    cache_purge: float = 3600.0

    def get(self, loop: str) -> float:
        try:
            return float(getattr(self, loop))
        except AttributeError:
            raise ValueError(f"Unknown monitor loop: {loop!r}") from None


LOOPS = ("report", "alert", "health_check", "cache_purge")


class MonitorCoordinator:
    """Polls the trackers, raises alerts and keeps a bounded report history."""

    def __init__(
        self,
        health: HealthTracker,
        usage: UsageTracker,
        cache: CacheStore,
        analytics: CallAnalytics,
        store: DurableStorePort,
        *,
        clock: Clock | None = None,
        intervals: MonitorIntervals = MonitorIntervals(),
        thresholds: MonitorThresholds = MonitorThresholds(),
        report_history: int = 10,
        probe_timeout: float = 10.0,
    ) -> None:
        if report_history < 1:
            raise ValueError("report_history must be at least 1")
        self._health = health
        self._usage = usage
        self._cache = cache
        self._analytics = analytics
        self._store = store
        self._clock = clock or SystemClock()
        self._intervals = intervals
        self._thresholds = thresholds
        self._report_history = report_history
        self._probe_timeout = probe_timeout
        cache.reserve(REPORT_NAMESPACE)

        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._probes: dict[str, Probe] = {}
        self._probe_usage: dict[str, str] = {}
        self._listeners: list[AlertListener] = []
        self._last_alerts: list[Alert] = []

    @property
    def thresholds(self) -> MonitorThresholds:
        return self._thresholds

    @property
    def last_alerts(self) -> list[Alert]:
        return list(self._last_alerts)

    # ── Registration ─────────────────────────────────────────
    def register_probe(
        self,
        service: str,
        probe: Probe,
        *,
        usage_key: str | None = None,
    ) -> None:
        """Probe outcome is recorded under ``service`` by the health-check loop.

        A probe fails by raising or by returning ``False``. With ``usage_key``
        each ping is charged to that budget, and services registered with the
        same key share a single ping per tick.
        """
        self._probes[service] = probe
        if usage_key is None:
            self._probe_usage.pop(service, None)
        else:
            self._probe_usage[service] = usage_key

    def add_alert_listener(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    # ── Lifecycle ────────────────────────────────────────────
    def start(self, loops: Iterable[str] = LOOPS) -> None:
        for name in loops:
            self.start_loop(name)

    def start_loop(self, name: str) -> None:
        interval = self._intervals.get(name)
        task = self._tasks.get(name)
        if task is not None and not task.done():
            return
        self._tasks[name] = asyncio.create_task(
            self._run(name, interval, self._tick_for(name)),
            name=f"geoshield-monitor-{name}",
        )

    async def stop_loop(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def running_loops(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def _tick_for(self, name: str) -> Callable[[], Awaitable[Any]]:
        return {
            "report": self.generate_report,
            "alert": self.check_alerts,
            "health_check": self.run_health_checks,
            "cache_purge": self._cache.purge_expired,
        }[name]

    async def _run(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[Any]],
    ) -> None:
        logger.info("monitor_loop_started", loop=name, interval_s=interval)
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await tick()
                except Exception:
                    logger.exception("monitor_loop_tick_failed", loop=name)
        finally:
            logger.info("monitor_loop_stopped", loop=name)

    # ── Status ───────────────────────────────────────────────
    def status(self) -> dict[str, Any]:
        """Everything an operator needs, without touching the durable tier."""
        return {
            "timestamp": isoformat(self._clock.now()),
            "analytics": self._analytics.summary(),
            "health": self.health_view(),
            "performance": self._analytics.performance(),
            "rate_limits": {
                name: status.to_dict() for name, status in self._usage.all_status().items()
            },
            "cache": self._cache.snapshot().to_dict(),
            "overall_score": round(self._health.overall_score(), 2),
            "alerts": [alert.to_dict() for alert in self.evaluate_alerts()],
        }

    def health_view(self, names: Iterable[str] | None = None) -> dict[str, dict[str, Any]]:
        records = self._health.all_health()
        selected = sorted(records) if names is None else list(names)
        view: dict[str, dict[str, Any]] = {}
        for name in selected:
            record = records.get(name) or self._health.health(name)
            view[name] = {
                **record.to_dict(),
                "status": self._health.status_label(record).value,
                "health_score": round(self._health.health_score(record), 1),
                "is_healthy": self._health.is_healthy(name),
            }
        return view

    # ── Alerts ───────────────────────────────────────────────
    def evaluate_alerts(self) -> list[Alert]:
        now = self._clock.now()
        thr = self._thresholds
        alerts: list[Alert] = []

        summary = self._analytics.summary()
        error_rate = summary["error_rate"]
        if summary["total_requests"] and error_rate > thr.error_rate:
            alerts.append(
                Alert(
                    type=AlertType.HIGH_ERROR_RATE,
                    severity=AlertSeverity.WARNING,
                    message=f"Overall error rate is {error_rate * 100:.1f}%",
                    threshold=thr.error_rate * 100,
                    current_value=error_rate * 100,
                    timestamp=now,
                )
            )

        records = self._health.all_health()
        for name in sorted(records):
            record = records[name]
            score = self._health.health_score(record)
            if not self._health.is_healthy(name) or score < thr.health_score:
                label = self._health.status_label(record).value
                alerts.append(
                    Alert(
                        type=AlertType.UNHEALTHY_SERVICE,
                        severity=(
                            AlertSeverity.WARNING if record.is_available else AlertSeverity.CRITICAL
                        ),
                        message=f"Service {name} is {label} (health score {score:.0f})",
                        threshold=thr.health_score,
                        current_value=score,
                        timestamp=now,
                        service_name=name,
                    )
                )
            if record.average_response_time > thr.response_time_s:
                alerts.append(
                    Alert(
                        type=AlertType.SLOW_RESPONSE,
                        severity=AlertSeverity.WARNING,
                        message=(
                            f"Service {name} has slow response time: "
                            f"{record.average_response_time * 1000:.0f}ms"
                        ),
                        threshold=thr.response_time_s * 1000,
                        current_value=record.average_response_time * 1000,
                        timestamp=now,
                        service_name=name,
                    )
                )

        if records:
            overall = self._health.overall_score()
            if overall < thr.health_score:
                alerts.append(
                    Alert(
                        type=AlertType.LOW_SYSTEM_HEALTH,
                        severity=AlertSeverity.CRITICAL,
                        message=f"Overall system health is low: {overall:.1f}%",
                        threshold=thr.health_score,
                        current_value=overall,
                        timestamp=now,
                    )
                )
        return alerts

    async def check_alerts(self) -> list[Alert]:
        """One alert tick: recompute, log, export gauges and notify listeners."""
        alerts = self.evaluate_alerts()
        counts = Counter(alert.type for alert in alerts)
        for alert_type in AlertType:
            ACTIVE_ALERTS.labels(type=alert_type.value).set(counts.get(alert_type, 0))
        OVERALL_HEALTH_SCORE.set(self._health.overall_score())

        for alert in alerts:
            log = logger.error if alert.severity == AlertSeverity.CRITICAL else logger.warning
            log(
                "monitor_alert",
                alert_type=alert.type.value,
                severity=alert.severity.value,
                message=alert.message,
                service=alert.service_name,
            )

        self._last_alerts = alerts
        for listener in list(self._listeners):
            try:
                result = listener(alerts)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("alert_listener_failed")
        return alerts

    # ── Health probes ────────────────────────────────────────
    async def run_health_checks(self) -> dict[str, bool]:
        """Run every probe once; services sharing a budget share one ping.

        A probe whose request budget is spent is skipped and nothing is
        recorded for it.
        """
        results: dict[str, bool] = {}
        shared: dict[str, tuple[bool, str, float] | None] = {}
        for service, probe in list(self._probes.items()):
            usage_key = self._probe_usage.get(service)
            if usage_key is not None and usage_key in shared:
                outcome = shared[usage_key]
            else:
                if usage_key is not None and not self._usage.try_acquire(usage_key):
                    logger.info("monitor_probe_skipped", service=service, usage_key=usage_key)
                    outcome = None
                else:
                    outcome = await self._ping(probe)
                if usage_key is not None:
                    shared[usage_key] = outcome
            if outcome is None:
                continue

            ok, reason, latency = outcome
            if ok:
                self._health.record_success(service, latency)
            else:
                self._health.record_failure(service, latency, reason)
            results[service] = ok
        if results:
            logger.info("monitor_health_check_completed", results=results)
        return results

    async def _ping(self, probe: Probe) -> tuple[bool, str, float]:
        start = time.monotonic()
        try:
            outcome = await asyncio.wait_for(probe(), timeout=self._probe_timeout)
        except asyncio.TimeoutError:
            reason = f"ProviderTimeout: health probe timed out after {self._probe_timeout}s"
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
        else:
            if outcome is not False:
                return True, "", time.monotonic() - start
            reason = "health probe reported unavailable"
        return False, reason, time.monotonic() - start

    # ── Reports ──────────────────────────────────────────────
    async def generate_report(self) -> dict[str, Any]:
        now = self._clock.now()
        status = self.status()
        status["cache"] = (await self._cache.stats()).to_dict()
        unhealthy = self._health.unhealthy_services()
        report_id = await self._next_report_id(now)
        report = {
            "report_id": report_id,
            "generated_at": isoformat(now),
            "status": status,
            "recent_errors": self._analytics.error_log(20),
            "unhealthy_services": list(self.health_view(unhealthy).values()),
            "recommendations": recommendations(status, unhealthy, self._thresholds),
        }
        await self._store.put(REPORT_NAMESPACE, report["report_id"], orjson.dumps(report))

        keys = await self._store.list_keys(REPORT_NAMESPACE)
        for stale in sorted(keys)[: -self._report_history]:
            await self._store.delete(REPORT_NAMESPACE, stale)

        logger.info(
            "monitor_report_generated",
            report_id=report["report_id"],
            unhealthy=len(unhealthy),
            recommendations=len(report["recommendations"]),
        )
        return report

    async def _next_report_id(self, now: float) -> str:
        # Epoch milliseconds plus a sequence: lexical order is generation order.
        prefix = f"{int(now * 1000):015d}"
        taken = {k for k in await self._store.list_keys(REPORT_NAMESPACE) if k.startswith(prefix)}
        seq = 0
        while f"{prefix}-{seq:03d}" in taken:
            seq += 1
        return f"{prefix}-{seq:03d}"

    async def recent_reports(self, limit: int = 10) -> list[dict[str, Any]]:
        """Persisted reports, newest first."""
        if limit <= 0:
            return []
        keys = sorted(await self._store.list_keys(REPORT_NAMESPACE), reverse=True)
        reports: list[dict[str, Any]] = []
        for key in keys:
            if len(reports) >= limit:
                break
            data = await self._store.get(REPORT_NAMESPACE, key)
            if data is None:
                continue
            try:
                reports.append(orjson.loads(data))
            except orjson.JSONDecodeError as exc:
                logger.warning("monitor_report_corrupt", report_id=key, error=str(exc))
                await self._store.delete(REPORT_NAMESPACE, key)
        return reports


# ═══════════════════════════════════════════════════════════════
#  Recommendations
# ═══════════════════════════════════════════════════════════════
def recommendations(
    status: Mapping[str, Any],
    unhealthy_services: Iterable[str],
    thresholds: MonitorThresholds = MonitorThresholds(),
) -> list[str]:
    """Advisory hints derived from one status snapshot. Never acts on them."""
    advice: list[str] = []

    cache = status.get("cache") or {}
    lookups = cache.get("hits", 0) + cache.get("misses", 0)
    hit_rate = cache.get("hit_rate", 0.0)
    if lookups and hit_rate < thresholds.recommend_cache_hit_rate:
        advice.append(
            "Consider increasing cache size or duration to improve cache hit rate "
            f"(currently {hit_rate * 100:.1f}%)"
        )

    analytics = status.get("analytics") or {}
    error_rate = analytics.get("error_rate", 0.0)
    if error_rate > thresholds.recommend_error_rate:
        advice.append(
            f"High error rate detected ({error_rate * 100:.1f}%). "
            "Review error logs and consider adding fallback providers"
        )

    overall = status.get("overall_score", 100.0)
    if status.get("health") and overall < thresholds.recommend_health_score:
        advice.append(
            f"System health is below optimal ({overall:.1f}%). "
            "Check individual service health and consider provider rotation"
        )

    unhealthy = list(unhealthy_services)
    if unhealthy:
        advice.append(
            f"{len(unhealthy)} service(s) are unhealthy ({', '.join(unhealthy)}). "
            "Consider circuit-breaking them or switching to backup providers"
        )

    for name, limit in (status.get("rate_limits") or {}).items():
        if limit.get("is_throttled"):
            advice.append(
                f"Service {name} is being rate limited. "
                "Consider request queuing or a higher quota"
            )

    if not advice:
        advice.append("All services are operating within normal parameters")
    return advice
