"""Wall clock used for timestamps, TTLs and usage windows."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Seconds since the epoch."""
        ...


class SystemClock:
    def now(self) -> float:
        return time.time()


def to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def isoformat(ts: float | None) -> str | None:
    if ts is None:
        return None
    return to_datetime(ts).isoformat()
