"""Exception hierarchy for the geodata resilience layer.

All exceptions inherit from ``GeoShieldError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class GeoShieldError(Exception):
    """Base class for all resilience-layer errors."""

    def __init__(self, message: str, *, code: str = "GEOSHIELD_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Provider outcomes ────────────────────────────────────────
class ProviderError(GeoShieldError):
    """Base for failures raised while talking to a geodata provider."""

    def __init__(self, provider: str, message: str, *, code: str = "PROVIDER_ERROR") -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}", code=code)


class ProviderTimeout(ProviderError):
    def __init__(self, provider: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(provider, f"Timed out after {timeout_s}s", code="PROVIDER_TIMEOUT")


class ProviderRejected(ProviderError):
    """Non-2xx answer: auth failure, provider-side throttling, bad request."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(provider, message, code="PROVIDER_REJECTED")


class ProviderUnreachable(ProviderError):
    """Transport-level failure (DNS, connection refused, offline device)."""

    def __init__(self, provider: str, message: str = "Provider unreachable") -> None:
        super().__init__(provider, message, code="PROVIDER_UNREACHABLE")


# ── Local vetoes ─────────────────────────────────────────────
class QuotaExceeded(GeoShieldError):
    """The usage tracker refused the call before any network attempt."""

    def __init__(self, service: str, *, limit: int | None = None) -> None:
        self.service = service
        self.limit = limit
        detail = f" (limit {limit})" if limit is not None else ""
        super().__init__(f"Request budget exhausted for {service!r}{detail}", code="QUOTA_EXCEEDED")


class CacheCorruption(GeoShieldError):
    """A stored cache entry could not be decoded. Never surfaced to callers."""

    def __init__(self, namespace: str, key: str, reason: str) -> None:
        self.namespace = namespace
        self.key = key
        super().__init__(
            f"Corrupt cache entry {namespace}/{key}: {reason}",
            code="CACHE_CORRUPTION",
        )


# ── Terminal ─────────────────────────────────────────────────
class CombinedFailure(GeoShieldError):
    """Both the primary and the secondary attempt failed."""

    def __init__(
        self,
        label: str,
        primary_error: BaseException,
        secondary_error: BaseException,
    ) -> None:
        self.label = label
        self.primary_error = primary_error
        self.secondary_error = secondary_error
        super().__init__(
            f"{label}: primary failed ({_describe(primary_error)}); "
            f"fallback failed ({_describe(secondary_error)})",
            code="COMBINED_FAILURE",
        )

    @property
    def causes(self) -> dict[str, str]:
        return {
            "primary": _describe(self.primary_error),
            "fallback": _describe(self.secondary_error),
        }


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"
