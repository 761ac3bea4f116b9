"""Tests for CallAnalytics."""

from __future__ import annotations

import pytest

from geoshield.shared.resilience import CallAnalytics


class TestCallAnalytics:
    def test_empty_summary(self, analytics: CallAnalytics) -> None:
        summary = analytics.summary()
        assert summary["total_requests"] == 0
        assert summary["success_rate"] == 1.0
        assert summary["error_rate"] == 0.0
        assert summary["services"] == []
        assert analytics.performance() == {}

    def test_counts_and_rates(self, analytics: CallAnalytics) -> None:
        for _ in range(3):
            analytics.record_success("nominatim", "search", 0.2)
        analytics.record_failure("nominatim", "search", 1.0, TimeoutError("slow"))
        analytics.record_skip("photon", "QuotaExceeded")

        summary = analytics.summary()
        assert summary["total_requests"] == 4
        assert summary["total_errors"] == 1
        assert summary["total_skipped"] == 1
        assert summary["error_rate"] == pytest.approx(0.25)
        assert summary["errors_by_service"] == {"nominatim": 1}
        stats = analytics.service_stats("nominatim")
        assert stats["success_count"] == 3
        assert stats["average_response_time_ms"] == 200.0

    def test_error_log_entries(self, analytics: CallAnalytics) -> None:
        analytics.record_failure("osrm", "routing", 0.05, ValueError("bad"))
        entry = analytics.error_log()[0]
        assert entry["service_name"] == "osrm"
        assert entry["operation"] == "routing"
        assert entry["error_type"] == "ValueError"
        assert entry["latency_ms"] == 50.0

    def test_error_log_is_bounded(self, analytics: CallAnalytics) -> None:
        for i in range(150):
            analytics.record_failure("svc", "op", 0.0, f"error {i}")
        log = analytics.error_log()
        assert len(log) == 100
        assert log[-1]["error"] == "error 149"
        assert len(analytics.error_log(5)) == 5
        assert analytics.error_log(0) == []

    def test_performance_percentiles(self, analytics: CallAnalytics, clock) -> None:
        for ms in range(1, 101):
            analytics.record_success("tiles", "fetch", ms / 1000)
        clock.advance(120)
        perf = analytics.performance()["tiles"]
        assert perf["min_ms"] == 1.0
        assert perf["max_ms"] == 100.0
        assert perf["p50_ms"] == 51.0
        assert perf["p95_ms"] == 96.0
        assert perf["p99_ms"] == 100.0
        assert perf["requests_per_minute"] == 50.0
        assert perf["error_rate_pct"] == 0.0

    def test_requests_per_minute_zero_in_first_minute(self, analytics: CallAnalytics) -> None:
        analytics.record_success("svc", "op", 0.1)
        assert analytics.performance()["svc"]["requests_per_minute"] == 0.0

    def test_reset(self, analytics: CallAnalytics, clock) -> None:
        analytics.record_failure("svc", "op", 0.1, "x")
        clock.advance(10)
        analytics.reset()
        summary = analytics.summary()
        assert summary["total_requests"] == 0
        assert summary["session_duration_s"] == 0.0
        assert analytics.error_log() == []
