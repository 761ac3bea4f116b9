"""Tests for MonitorCoordinator: alerts, probes, reports and loops."""

from __future__ import annotations

import asyncio

import pytest

from geoshield.adapters.outbound.store import MemoryDurableStore
from geoshield.shared.cache import CacheStore
from geoshield.shared.resilience import (
    AlertSeverity,
    AlertType,
    CallAnalytics,
    HealthTracker,
    MonitorCoordinator,
    MonitorIntervals,
    RateLimit,
    UsageTracker,
    recommendations,
)
from geoshield.shared.resilience.monitor import REPORT_NAMESPACE


@pytest.fixture
def monitor(health, usage, cache, analytics, memory_store, clock) -> MonitorCoordinator:
    return MonitorCoordinator(
        health,
        usage,
        cache,
        analytics,
        memory_store,
        clock=clock,
        report_history=3,
        probe_timeout=0.05,
    )


def _types(alerts) -> list[AlertType]:
    return [a.type for a in alerts]


# ═══════════════════════════════════════════════════════════════
#  Status & alerts
# ═══════════════════════════════════════════════════════════════
class TestStatus:
    def test_status_shape(self, monitor: MonitorCoordinator) -> None:
        status = monitor.status()
        assert set(status) == {
            "timestamp",
            "analytics",
            "health",
            "performance",
            "rate_limits",
            "cache",
            "overall_score",
            "alerts",
        }
        assert "nominatim" in status["rate_limits"]

    def test_health_view_includes_labels(self, monitor, health: HealthTracker) -> None:
        health.record_success("primary_routing", 0.2)
        view = monitor.health_view()["primary_routing"]
        assert view["status"] == "healthy"
        assert view["is_healthy"] is True
        assert view["health_score"] > 90


class TestAlerts:
    def test_no_alerts_when_idle(self, monitor: MonitorCoordinator) -> None:
        assert monitor.evaluate_alerts() == []

    def test_high_error_rate(self, monitor, analytics: CallAnalytics) -> None:
        for _ in range(8):
            analytics.record_success("svc", "op", 0.1)
        for _ in range(2):
            analytics.record_failure("svc", "op", 0.1, "x")
        alerts = monitor.evaluate_alerts()
        assert _types(alerts) == [AlertType.HIGH_ERROR_RATE]
        assert alerts[0].current_value == pytest.approx(20.0)
        assert alerts[0].threshold == pytest.approx(10.0)

    def test_unavailable_service_is_critical(self, monitor, health: HealthTracker) -> None:
        health.record_failure("primary_tiles", 0.1, "x")
        alerts = monitor.evaluate_alerts()
        unhealthy = [a for a in alerts if a.type == AlertType.UNHEALTHY_SERVICE]
        assert len(unhealthy) == 1
        assert unhealthy[0].severity == AlertSeverity.CRITICAL
        assert unhealthy[0].service_name == "primary_tiles"
        assert "primary_tiles" in unhealthy[0].message
        assert AlertType.LOW_SYSTEM_HEALTH in _types(alerts)

    def test_slow_service(self, monitor, health: HealthTracker) -> None:
        health.record_success("slowpoke", 11.0)
        alerts = monitor.evaluate_alerts()
        slow = [a for a in alerts if a.type == AlertType.SLOW_RESPONSE]
        assert len(slow) == 1
        assert slow[0].current_value == pytest.approx(11000.0)
        # Available but not healthy (latency ceiling).
        unhealthy = [a for a in alerts if a.type == AlertType.UNHEALTHY_SERVICE]
        assert unhealthy[0].severity == AlertSeverity.WARNING

    def test_healthy_system_raises_nothing(self, monitor, health: HealthTracker) -> None:
        for name in ("a", "b"):
            health.record_success(name, 0.1)
        assert monitor.evaluate_alerts() == []

    @pytest.mark.asyncio
    async def test_check_alerts_notifies_listeners(self, monitor, health: HealthTracker) -> None:
        received: list = []

        async def async_listener(alerts) -> None:
            received.append(("async", len(alerts)))

        def broken_listener(alerts) -> None:
            raise RuntimeError("listener bug")

        monitor.add_alert_listener(lambda alerts: received.append(("sync", len(alerts))))
        monitor.add_alert_listener(broken_listener)
        monitor.add_alert_listener(async_listener)
        health.record_failure("svc", 0.1, "x")

        alerts = await monitor.check_alerts()

        assert received == [("sync", len(alerts)), ("async", len(alerts))]
        assert monitor.last_alerts == alerts


# ═══════════════════════════════════════════════════════════════
#  Probes
# ═══════════════════════════════════════════════════════════════
class TestHealthChecks:
    @pytest.mark.asyncio
    async def test_probe_outcomes_feed_health(self, monitor, health: HealthTracker) -> None:
        async def up() -> bool:
            return True

        async def reports_down() -> bool:
            return False

        async def raises() -> None:
            raise ConnectionError("refused")

        async def hangs() -> None:
            await asyncio.sleep(1)

        monitor.register_probe("up", up)
        monitor.register_probe("down", reports_down)
        monitor.register_probe("raises", raises)
        monitor.register_probe("hangs", hangs)

        results = await monitor.run_health_checks()

        assert results == {"up": True, "down": False, "raises": False, "hangs": False}
        assert health.health("up").successful_requests == 1
        assert "ConnectionError" in (health.health("raises").last_error or "")
        assert "timed out" in (health.health("hangs").last_error or "")

    @pytest.mark.asyncio
    async def test_probe_drives_recovery(self, monitor, health: HealthTracker, clock) -> None:
        for _ in range(5):
            health.record_failure("primary_geocoding_search", 0.1, "down")
        clock.advance(301)

        async def up() -> bool:
            return True

        monitor.register_probe("primary_geocoding_search", up)
        await monitor.run_health_checks()
        assert health.health("primary_geocoding_search").is_available is True

    @pytest.mark.asyncio
    async def test_services_sharing_a_budget_share_one_ping(
        self, monitor, health: HealthTracker, usage: UsageTracker, clock
    ) -> None:
        pings = 0

        async def nominatim_up() -> bool:
            nonlocal pings
            pings += 1
            return True

        monitor.register_probe("primary_geocoding_search", nominatim_up, usage_key="nominatim")
        monitor.register_probe("primary_geocoding_reverse", nominatim_up, usage_key="nominatim")

        results = await monitor.run_health_checks()
        assert results == {"primary_geocoding_search": True, "primary_geocoding_reverse": True}
        assert pings == 1
        assert usage.status("nominatim").current_usage == 1
        assert health.health("primary_geocoding_reverse").successful_requests == 1

    @pytest.mark.asyncio
    async def test_spent_budget_skips_ping_and_records_nothing(
        self, monitor, health: HealthTracker, usage: UsageTracker
    ) -> None:
        pings = 0

        async def nominatim_up() -> bool:
            nonlocal pings
            pings += 1
            return True

        monitor.register_probe("primary_geocoding_search", nominatim_up, usage_key="nominatim")
        assert usage.try_acquire("nominatim") is True

        assert await monitor.run_health_checks() == {}
        assert pings == 0
        assert health.health("primary_geocoding_search").total_requests == 0
        assert usage.status("nominatim").current_usage == 1


# ═══════════════════════════════════════════════════════════════
#  Reports
# ═══════════════════════════════════════════════════════════════
class TestReports:
    @pytest.mark.asyncio
    async def test_generate_and_list(self, monitor, health: HealthTracker, clock) -> None:
        health.record_failure("osrm", 0.1, "x")
        report = await monitor.generate_report()

        assert len(report["report_id"]) == 19
        assert report["unhealthy_services"][0]["service_name"] == "osrm"
        assert any("osrm" in line for line in report["recommendations"])
        assert "namespaces" in report["status"]["cache"]

        listed = await monitor.recent_reports()
        assert listed[0]["report_id"] == report["report_id"]

    @pytest.mark.asyncio
    async def test_history_is_trimmed_newest_first(
        self, monitor, memory_store: MemoryDurableStore, clock
    ) -> None:
        ids = []
        for _ in range(5):
            ids.append((await monitor.generate_report())["report_id"])
            clock.advance(60)

        assert len(await memory_store.list_keys(REPORT_NAMESPACE)) == 3
        listed = await monitor.recent_reports(10)
        assert [r["report_id"] for r in listed] == list(reversed(ids[-3:]))
        assert len(await monitor.recent_reports(1)) == 1
        assert await monitor.recent_reports(0) == []

    @pytest.mark.asyncio
    async def test_corrupt_report_is_dropped(
        self, monitor, memory_store: MemoryDurableStore
    ) -> None:
        await memory_store.put(REPORT_NAMESPACE, "999999999999999", b"{broken")
        assert await monitor.recent_reports() == []
        assert await memory_store.list_keys(REPORT_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_reports_in_the_same_millisecond_get_distinct_ids(self, monitor) -> None:
        first = (await monitor.generate_report())["report_id"]
        second = (await monitor.generate_report())["report_id"]

        assert first.endswith("-000")
        assert second.endswith("-001")
        assert first[:15] == second[:15]
        listed = await monitor.recent_reports()
        assert [r["report_id"] for r in listed] == [second, first]

    @pytest.mark.asyncio
    async def test_cache_maintenance_leaves_reports_alone(
        self, monitor, cache: CacheStore, clock
    ) -> None:
        await monitor.generate_report()
        clock.advance(10_000_000)

        assert await cache.purge_expired(REPORT_NAMESPACE) == 0
        await cache.purge_expired()
        await cache.clear()
        assert len(await monitor.recent_reports()) == 1
        assert REPORT_NAMESPACE not in cache.namespaces
        with pytest.raises(ValueError):
            await cache.put(REPORT_NAMESPACE, "x", {})

    def test_rejects_empty_history(self, health, usage, cache, analytics, memory_store) -> None:
        with pytest.raises(ValueError):
            MonitorCoordinator(health, usage, cache, analytics, memory_store, report_history=0)


class TestRecommendations:
    def test_normal(self) -> None:
        assert recommendations({}, []) == ["All services are operating within normal parameters"]

    def test_every_rule(self) -> None:
        status = {
            "cache": {"hits": 1, "misses": 9, "hit_rate": 0.1},
            "analytics": {"error_rate": 0.2},
            "health": {"svc": {}},
            "overall_score": 40.0,
            "rate_limits": {"nominatim": {"is_throttled": True}},
        }
        advice = recommendations(status, ["svc"])
        assert len(advice) == 5
        assert any("cache hit rate" in line for line in advice)
        assert any("nominatim" in line for line in advice)

    def test_cold_cache_is_not_flagged(self) -> None:
        status = {"cache": {"hits": 0, "misses": 0, "hit_rate": 0.0}}
        assert recommendations(status, []) == [
            "All services are operating within normal parameters"
        ]

    def test_throttled_provider_from_live_status(self, monitor, usage: UsageTracker) -> None:
        usage.configure("tiny", RateLimit(1, 60))
        usage.record_call("tiny")
        advice = recommendations(monitor.status(), [])
        assert any("tiny" in line for line in advice)


# ═══════════════════════════════════════════════════════════════
#  Loops
# ═══════════════════════════════════════════════════════════════
class TestLoops:
    @pytest.fixture
    def fast_monitor(self, health, usage, cache, analytics, memory_store, clock):
        return MonitorCoordinator(
            health,
            usage,
            cache,
            analytics,
            memory_store,
            clock=clock,
            intervals=MonitorIntervals(report=0.01, alert=0.01, health_check=0.01, cache_purge=0.01),
        )

    @pytest.mark.asyncio
    async def test_start_and_stop(self, fast_monitor: MonitorCoordinator) -> None:
        ticks = asyncio.Event()
        fast_monitor.add_alert_listener(lambda alerts: ticks.set())

        fast_monitor.start()
        assert fast_monitor.running_loops == ["alert", "cache_purge", "health_check", "report"]
        await asyncio.wait_for(ticks.wait(), timeout=1.0)

        await fast_monitor.stop()
        assert fast_monitor.running_loops == []

    @pytest.mark.asyncio
    async def test_loops_are_independent_and_restart_safe(
        self, fast_monitor: MonitorCoordinator
    ) -> None:
        fast_monitor.start_loop("alert")
        fast_monitor.start_loop("alert")
        fast_monitor.start_loop("cache_purge")
        await fast_monitor.stop_loop("alert")
        assert fast_monitor.running_loops == ["cache_purge"]
        fast_monitor.start_loop("alert")
        assert fast_monitor.running_loops == ["alert", "cache_purge"]
        await fast_monitor.stop()

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_loop_alive(
        self, fast_monitor: MonitorCoordinator, monkeypatch
    ) -> None:
        calls = 0

        async def failing_report() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("store exploded")

        monkeypatch.setattr(fast_monitor, "generate_report", failing_report)
        fast_monitor.start_loop("report")
        for _ in range(50):
            if calls >= 2:
                break
            await asyncio.sleep(0.01)
        assert calls >= 2
        assert fast_monitor.running_loops == ["report"]
        await fast_monitor.stop()

    def test_unknown_loop(self, fast_monitor: MonitorCoordinator) -> None:
        with pytest.raises(ValueError):
            fast_monitor.start_loop("nope")
