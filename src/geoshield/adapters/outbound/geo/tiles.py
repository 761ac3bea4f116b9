"""Raster tile fetcher for ``{z}/{x}/{y}`` URL templates."""

from __future__ import annotations

import httpx

from geoshield.domain.exceptions import ProviderRejected
from geoshield.ports.outbound import TileFetcherPort

from .base import ClientOptions, HttpProviderClient


class HttpTileFetcher(HttpProviderClient, TileFetcherPort):
    """Fetches PNG tiles from an OSM-style tile server."""

    def __init__(
        self,
        name: str,
        url_template: str,
        *,
        options: ClientOptions = ClientOptions(),
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._template = url_template
        super().__init__(
            options=options,
            headers={"Accept": "image/png,image/*"},
            transport=transport,
        )

    def url_for(self, zoom: int, x: int, y: int) -> str:
        return self._template.format(z=zoom, x=x, y=y)

    async def fetch(self, zoom: int, x: int, y: int) -> bytes:
        if zoom < 0 or not (0 <= x < 1 << zoom and 0 <= y < 1 << zoom):
            raise ProviderRejected(self.name, f"Tile {zoom}/{x}/{y} out of range", status_code=400)
        response = await self._request("GET", self.url_for(zoom, x, y))
        if not response.content:
            raise ProviderRejected(self.name, "Empty tile body", status_code=response.status_code)
        return response.content

    async def ping(self) -> bool:
        response = await self._client.get(self.url_for(0, 0, 0))
        return response.status_code < 500
