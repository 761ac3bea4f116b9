"""GeoShield: resilience and caching layer for free-tier geodata providers."""

__version__ = "0.1.0"
