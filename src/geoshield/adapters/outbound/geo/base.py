"""Shared HTTP plumbing for geodata provider clients.

Transport errors are retried with exponential backoff; everything else
is mapped onto the provider error taxonomy and left to the
FallbackExecutor to decide what happens next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from geoshield.domain.exceptions import ProviderRejected, ProviderTimeout, ProviderUnreachable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClientOptions:
    """Per-client HTTP behaviour.

    Attributes:
        user_agent:   Sent on every request; OSM services require one.
        timeout_s:    httpx timeout for a single request.
        max_retries:  Extra attempts after a transport error (0 = none).
        backoff_base: First backoff delay in seconds.
        backoff_max:  Backoff ceiling in seconds.
    """

    user_agent: str = "GeoShield/1.0"
    timeout_s: float = 10.0
    max_retries: int = 2
    backoff_base: float = 0.5
    backoff_max: float = 4.0


class HttpProviderClient:
    """Base class: one ``httpx.AsyncClient`` per provider."""

    name: str = "http"
    _ping_path: str = "/"
    _ping_params: dict[str, Any] = {}

    def __init__(
        self,
        base_url: str = "",
        *,
        options: ClientOptions = ClientOptions(),
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._options = options
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": options.user_agent, "Accept": "application/json", **(headers or {})},
            timeout=options.timeout_s,
            follow_redirects=True,
            transport=transport,
        )
        logger.info("geo_client_initialized", provider=self.name, base_url=base_url)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._options.max_retries + 1),
            wait=wait_exponential(
                multiplier=self._options.backoff_base,
                max=self._options.backoff_max,
            ),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(self.name, self._options.timeout_s) from exc
        except httpx.TransportError as exc:
            raise ProviderUnreachable(self.name, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 429:
            raise ProviderRejected(self.name, "Rate limited by provider", status_code=429)
        if response.status_code in (401, 403):
            raise ProviderRejected(
                self.name, "Authentication rejected", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise ProviderRejected(
                self.name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRejected(
                self.name, "Malformed JSON response", status_code=response.status_code
            ) from exc

    async def ping(self) -> bool:
        """Reachability probe: any non-5xx answer counts as up."""
        response = await self._client.get(self._ping_path, params=self._ping_params or None)
        return response.status_code < 500

    async def close(self) -> None:
        await self._client.aclose()
