from __future__ import annotations

from asyncio import Lock
import time
from typing import Any, Dict, Tuple

from .config import STANDINGS_CACHE_TTL_SECONDS

STANDINGS = "standings"
PLAYER_STATS = "player_stats"


class TripViewCache:
    """In-memory, TTL-bounded cache of derived per-trip views.

    Entries are keyed by ``(trip_id, view)``. Any scoring change in a trip
    drops every view of that trip at once.
    """

    def __init__(self, ttl_seconds: float = 30.0) -> None:
        self._ttl = ttl_seconds
        self._lock = Lock()
        self._store: Dict[Tuple[str, str], Tuple[Any, float]] = {}

    async def get(self, trip_id: str, view: str) -> Any | None:
        now = time.monotonic()
        async with self._lock:
            entry = self._store.get((trip_id, view))
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                del self._store[(trip_id, view)]
                return None
            return value

    async def put(self, trip_id: str, view: str, value: Any) -> None:
        if self._ttl <= 0:
            return
        async with self._lock:
            self._store[(trip_id, view)] = (value, time.monotonic() + self._ttl)

    async def invalidate_trip(self, trip_id: str | None) -> None:
        if not trip_id:
            return
        async with self._lock:
            for key in [k for k in self._store if k[0] == trip_id]:
                del self._store[key]

    def reset(self) -> None:
        self._store.clear()


standings_cache = TripViewCache(ttl_seconds=STANDINGS_CACHE_TTL_SECONDS)
