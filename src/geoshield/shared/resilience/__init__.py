"""Provider resilience framework.

Health tracking, request budgets, primary/secondary failover, call
analytics and periodic monitoring for any outbound geodata provider.
"""

from geoshield.shared.resilience.types import (
    Alert,
    AlertSeverity,
    AlertType,
    HealthPolicy,
    HealthRecord,
    RateLimit,
    ServiceStatus,
    UsageStatus,
    UsageWindow,
)
from geoshield.shared.resilience.health import HealthTracker
from geoshield.shared.resilience.usage import DEFAULT_RATE_LIMITS, UsageTracker
from geoshield.shared.resilience.analytics import CallAnalytics
from geoshield.shared.resilience.fallback import FallbackExecutor, fallback_key, primary_key
from geoshield.shared.resilience.monitor import (
    MonitorCoordinator,
    MonitorIntervals,
    MonitorThresholds,
    recommendations,
)

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertType",
    "CallAnalytics",
    "DEFAULT_RATE_LIMITS",
    "FallbackExecutor",
    "HealthPolicy",
    "HealthRecord",
    "HealthTracker",
    "MonitorCoordinator",
    "MonitorIntervals",
    "MonitorThresholds",
    "RateLimit",
    "ServiceStatus",
    "UsageStatus",
    "UsageTracker",
    "UsageWindow",
    "fallback_key",
    "primary_key",
    "recommendations",
]
