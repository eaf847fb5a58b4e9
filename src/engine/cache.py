"""
TTL cache of last-known locations, owned by one engine session.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from shared.constants import LOCATION_CACHE_TTL_S
from shared.types import Coordinate

logger = logging.getLogger("LocationCache")


class LocationCache:
    def __init__(self, ttl_s: float = LOCATION_CACHE_TTL_S,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: Dict[str, Tuple[Coordinate, float]] = {}

    def get(self, key: str) -> Optional[Coordinate]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        location, stored_at = entry
        if self._clock() - stored_at > self.ttl_s:
            del self._entries[key]
            return None
        return location

    def put(self, key: str, location: Coordinate) -> None:
        self._entries[key] = (location, self._clock())

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, stored_at) in self._entries.items() if now - stored_at > self.ttl_s]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired location(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
