"""Tests for UsageTracker request budgets."""

from __future__ import annotations

import pytest

from geoshield.shared.resilience import RateLimit, UsageTracker


class TestUsageTracker:
    def test_default_limits_are_configured(self, usage: UsageTracker) -> None:
        assert "nominatim" in usage.services
        assert usage.status("openrouteservice").limit == 40
        assert usage.status("openrouteservice_daily").window_seconds == 86_400.0

    def test_unconfigured_service_is_unlimited(self, usage: UsageTracker) -> None:
        assert usage.can_proceed("unknown") is True
        usage.record_call("unknown")
        assert usage.remaining("unknown") is None
        status = usage.status("unknown")
        assert status.limit is None
        assert status.is_throttled is False

    def test_limit_reached(self, clock) -> None:
        usage = UsageTracker({"svc": RateLimit(3, 10.0)}, clock=clock)
        for _ in range(3):
            assert usage.can_proceed("svc")
            usage.record_call("svc")
        assert usage.can_proceed("svc") is False
        assert usage.remaining("svc") == 0
        assert usage.status("svc").is_throttled is True

    def test_window_slides(self, clock) -> None:
        usage = UsageTracker({"svc": RateLimit(2, 10.0)}, clock=clock)
        usage.record_call("svc")
        clock.advance(5)
        usage.record_call("svc")
        assert usage.can_proceed("svc") is False

        clock.advance(5.5)
        assert usage.can_proceed("svc") is True
        assert usage.remaining("svc") == 1

    def test_reset_eta(self, clock) -> None:
        usage = UsageTracker({"svc": RateLimit(2, 60.0)}, clock=clock)
        assert usage.status("svc").reset_eta == 0.0
        usage.record_call("svc")
        clock.advance(20)
        assert usage.status("svc").reset_eta == pytest.approx(40.0)

    def test_try_acquire(self, clock) -> None:
        usage = UsageTracker({"svc": RateLimit.per_second(1)}, clock=clock)
        assert usage.try_acquire("svc") is True
        assert usage.try_acquire("svc") is False
        clock.advance(1.01)
        assert usage.try_acquire("svc") is True

    def test_daily_window_clears_on_day_change(self, clock) -> None:
        usage = UsageTracker({"daily": RateLimit.per_day(2)}, clock=clock)
        usage.record_call("daily")
        usage.record_call("daily")
        assert usage.can_proceed("daily") is False

        # Past midnight UTC but well inside 24 hours.
        clock.advance(2 * 3600)
        assert usage.can_proceed("daily") is True
        assert usage.status("daily").current_usage == 0

    def test_reset_one_and_all(self, clock) -> None:
        usage = UsageTracker({"a": RateLimit(1, 60), "b": RateLimit(1, 60)}, clock=clock)
        usage.record_call("a")
        usage.record_call("b")
        usage.reset("a")
        assert usage.can_proceed("a") is True
        assert usage.can_proceed("b") is False
        usage.reset()
        assert usage.can_proceed("b") is True

    def test_configure_rejects_invalid_limits(self, usage: UsageTracker) -> None:
        with pytest.raises(ValueError):
            usage.configure("bad", RateLimit(0, 60))
        with pytest.raises(ValueError):
            usage.configure("bad", RateLimit(5, 0))

    def test_status_dict(self, clock) -> None:
        usage = UsageTracker({"svc": RateLimit(4, 60.0)}, clock=clock)
        usage.record_call("svc")
        data = usage.all_status()["svc"].to_dict()
        assert data == {
            "limit": 4,
            "window_seconds": 60.0,
            "current_usage": 1,
            "remaining": 3,
            "reset_eta_s": 60.0,
            "is_throttled": False,
        }

    def test_one_per_second_budget_replenishes(self, clock) -> None:
        usage = UsageTracker({"geo": RateLimit.per_second(1)}, clock=clock)
        assert usage.can_proceed("geo") is True
        usage.record_call("geo")
        clock.advance(0.1)
        assert usage.can_proceed("geo") is False
        clock.advance(1.0)
        assert usage.can_proceed("geo") is True
