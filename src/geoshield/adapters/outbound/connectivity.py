"""Connectivity adapters implementing ConnectivityPort."""

from __future__ import annotations

import structlog

from geoshield.ports.outbound import ConnectivityPort

logger = structlog.get_logger(__name__)


class StaticConnectivity(ConnectivityPort):
    """Connectivity flag flipped by the host (OS callback, operator, test)."""

    def __init__(self, online: bool = True) -> None:
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("connectivity_changed", online=online)
        self._online = online
