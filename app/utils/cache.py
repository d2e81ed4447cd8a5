"""Small keyed TTL cache for provider responses that several lookups share.

Usage:
    _events = TTLCache(ttl=120)

    hit, events = _events.get("soccer_epl")
    if not hit:
        events = await fetch()
        _events.set("soccer_epl", events)
"""

import time
from typing import Callable, Hashable


class TTLCache:
    """Entries expire ttl seconds after they were set. Not thread-safe; callers serialize."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, object]] = {}

    def get(self, key: Hashable) -> tuple[bool, object]:
        """(hit, value); an expired entry is dropped and reported as a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return False, None
        return True, value

    def set(self, key: Hashable, value: object) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
