"""Fallback executor: the single entry-point for primary-then-secondary calls.

Per call::

    TRY_PRIMARY ──ok──▶ DONE
        │ skip / fail
        ▼
    TRY_SECONDARY ──ok──▶ DONE
        │ fail
        ▼
    FAILED (CombinedFailure, or the caller's degraded default)

Provider-specific services hand in two zero-argument coroutine factories and
a label; the executor gates the primary on health and usage, applies a
per-attempt timeout and records every outcome.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from geoshield.domain.exceptions import (
    CombinedFailure,
    ProviderTimeout,
    ProviderUnreachable,
    QuotaExceeded,
)
from geoshield.shared.observability.metrics import (
    COMBINED_FAILURES_TOTAL,
    FALLBACKS_TOTAL,
    PROVIDER_ATTEMPTS,
    PROVIDER_LATENCY,
)
from geoshield.shared.resilience.analytics import CallAnalytics
from geoshield.shared.resilience.health import HealthTracker
from geoshield.shared.resilience.usage import UsageTracker

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Thunk = Callable[[], Awaitable[T]]

# Marks "no degraded default supplied"; None is a legitimate default.
_MISSING: Any = object()
_SENTINEL = object()


def primary_key(label: str) -> str:
    return f"primary_{label}"


def fallback_key(label: str) -> str:
    return f"fallback_{label}"


class FallbackExecutor:
    """Composes HealthTracker, UsageTracker and CallAnalytics around a call pair."""

    def __init__(
        self,
        health: HealthTracker,
        usage: UsageTracker,
        analytics: CallAnalytics | None = None,
        *,
        default_timeout: float = 10.0,
        fallback_enabled: bool = True,
    ) -> None:
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self._health = health
        self._usage = usage
        self._analytics = analytics
        self._default_timeout = default_timeout
        self._fallback_enabled = fallback_enabled

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    async def execute(
        self,
        primary: Thunk[T],
        secondary: Thunk[T],
        label: str,
        *,
        timeout: float | None = None,
        usage_keys: Iterable[str] | None = None,
        secondary_usage_keys: Iterable[str] = (),
        degraded: Any = _MISSING,
    ) -> T:
        """Run ``primary``; on skip or failure run ``secondary``.

        Args:
            primary: Zero-argument coroutine factory for the preferred provider.
            secondary: Zero-argument coroutine factory for the fallback provider.
            label: Operation label; health is tracked as ``primary_<label>`` and
                ``fallback_<label>``.
            timeout: Per-attempt timeout in seconds (default ``default_timeout``).
            usage_keys: Budgets that must all admit the primary (default: the label).
            secondary_usage_keys: Budgets that must admit the secondary.
            degraded: Value returned instead of raising when both attempts fail.

        Raises:
            CombinedFailure: Both attempts failed and no degraded default was given.
        """
        timeout = self._default_timeout if timeout is None else timeout
        keys = [label] if usage_keys is None else list(usage_keys)
        errors: dict[str, BaseException] = {}
        p_key = primary_key(label)

        veto = self._gate(p_key, keys, check_health=True)
        if veto is not None:
            errors[p_key] = veto
            self._record_skip(p_key, veto)
        else:
            result = await self._attempt(p_key, label, primary, timeout, errors)
            if result is not _SENTINEL:
                return result  # type: ignore[return-value]

        primary_error = errors[p_key]
        if not self._fallback_enabled:
            return self._give_up(label, primary_error, None, degraded)

        f_key = fallback_key(label)
        veto = self._gate(f_key, list(secondary_usage_keys), check_health=False)
        if veto is not None:
            errors[f_key] = veto
            self._record_skip(f_key, veto)
        else:
            result = await self._attempt(f_key, label, secondary, timeout, errors)
            if result is not _SENTINEL:
                FALLBACKS_TOTAL.labels(label=label).inc()
                logger.info(
                    "fallback_used",
                    label=label,
                    primary_error=str(primary_error),
                )
                return result  # type: ignore[return-value]

        return self._give_up(label, primary_error, errors[f_key], degraded)

    # ── Gating ───────────────────────────────────────────────
    def _gate(
        self,
        service: str,
        usage_keys: list[str],
        *,
        check_health: bool,
    ) -> BaseException | None:
        """Return the veto that prevents an attempt, or None to proceed."""
        if check_health and not self._health.allows_attempt(service):
            return ProviderUnreachable(service, "Skipped: provider marked unavailable")
        for key in usage_keys:
            if not self._usage.can_proceed(key):
                return QuotaExceeded(key, limit=self._usage.status(key).limit)
        for key in usage_keys:
            self._usage.record_call(key)
        return None

    def _record_skip(self, service: str, veto: BaseException) -> None:
        PROVIDER_ATTEMPTS.labels(service=service, outcome="skipped").inc()
        if self._analytics is not None:
            self._analytics.record_skip(service, type(veto).__name__)
        logger.info("provider_attempt_skipped", service=service, reason=str(veto))

    # ── Attempt ──────────────────────────────────────────────
    async def _attempt(
        self,
        service: str,
        label: str,
        thunk: Thunk[T],
        timeout: float,
        errors: dict[str, BaseException],
    ) -> T | object:
        log = logger.bind(service=service, label=label)
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(thunk(), timeout=timeout)
        except asyncio.TimeoutError:
            error: Exception = ProviderTimeout(service, timeout)
        except Exception as exc:
            error = exc
        else:
            latency = time.monotonic() - start
            self._health.record_success(service, latency)
            if self._analytics is not None:
                self._analytics.record_success(service, label, latency)
            PROVIDER_ATTEMPTS.labels(service=service, outcome="success").inc()
            PROVIDER_LATENCY.labels(service=service).observe(latency)
            log.debug("provider_attempt_success", latency_ms=float(f"{latency * 1000:.1f}"))
            return result

        latency = time.monotonic() - start
        reason = f"{type(error).__name__}: {error}"
        self._health.record_failure(service, latency, reason)
        if self._analytics is not None:
            self._analytics.record_failure(service, label, latency, error)
        PROVIDER_ATTEMPTS.labels(service=service, outcome="failure").inc()
        PROVIDER_LATENCY.labels(service=service).observe(latency)
        log.warning(
            "provider_attempt_failed",
            error=reason,
            latency_ms=float(f"{latency * 1000:.1f}"),
        )
        errors[service] = error
        return _SENTINEL

    # ── Terminal ─────────────────────────────────────────────
    def _give_up(
        self,
        label: str,
        primary_error: BaseException,
        secondary_error: BaseException | None,
        degraded: Any,
    ) -> Any:
        if secondary_error is not None:
            COMBINED_FAILURES_TOTAL.labels(label=label).inc()
        if degraded is not _MISSING:
            logger.warning(
                "fallback_degraded_default",
                label=label,
                primary_error=str(primary_error),
                secondary_error=str(secondary_error) if secondary_error else None,
            )
            return degraded
        if secondary_error is None:
            logger.error("provider_failed_no_fallback", label=label, error=str(primary_error))
            raise primary_error
        failure = CombinedFailure(label, primary_error, secondary_error)
        logger.error("provider_combined_failure", label=label, causes=failure.causes)
        raise failure
