"""
TTL cache used for hot read paths such as the menu listing.

Instances are independent; create one per scope rather than sharing a global.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

DEFAULT_DURATION = 30.0


class TTLCache:
    def __init__(self, default_duration: float = DEFAULT_DURATION,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.default_duration = default_duration
        self._clock = clock
        self._items: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, duration: Optional[float] = None) -> None:
        ttl = self.default_duration if duration is None else duration
        with self._lock:
            self._items[key] = (value, self._clock() + ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() > expires_at:
                del self._items[key]
                return None
            return value

    def get_or_load(self, key: str, loader: Callable[[], Any], duration: Optional[float] = None) -> Any:
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value, duration)
        return value

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
