"""HTTP clients for the public geodata providers."""

from .base import ClientOptions, HttpProviderClient
from .geocoders import NominatimGeocoder, PhotonGeocoder
from .routers import OpenRouteServiceRouter, OsrmRouter
from .tiles import HttpTileFetcher

__all__ = [
    "ClientOptions",
    "HttpProviderClient",
    "HttpTileFetcher",
    "NominatimGeocoder",
    "OpenRouteServiceRouter",
    "OsrmRouter",
    "PhotonGeocoder",
]
