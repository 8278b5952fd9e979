"""In-memory TTL cache for upstream API responses."""
import threading
import time
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple


class ResponseCache:
    """
    Thread-safe key/value cache whose entries expire after a TTL.

    Args:
        default_ttl: Seconds an entry lives when set() is given no ttl
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[Hashable]:
        with self._lock:
            now = self._clock()
            return [key for key, (_, expires_at) in self._entries.items() if expires_at > now]

    def __len__(self) -> int:
        return len(self.keys())
