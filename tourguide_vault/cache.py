"""Short-lived in-memory cache of decrypted tokens.

The cache only saves round-trips to the vault; it is never the source of
truth and may be cleared at any time. Entries expire after a fixed TTL and
are otherwise never evicted: the number of distinct services is small.
"""
import time
import threading
from typing import Callable, NamedTuple, Optional


class CacheEntry(NamedTuple):
    token: str
    expiry: float


class TokenCache:
    """TTL map of ``service_name -> token``, safe to share between threads."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, service_name: str) -> Optional[str]:
        """Return the cached token, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(service_name)
            if entry is None:
                return None
            if entry.expiry <= self._clock():
                del self._entries[service_name]
                return None
            return entry.token

    def put(self, service_name: str, token: str, ttl: Optional[float] = None) -> None:
        expiry = self._clock() + (self._ttl if ttl is None else ttl)
        with self._lock:
            self._entries[service_name] = CacheEntry(token, expiry)

    def invalidate(self, service_name: str) -> None:
        with self._lock:
            self._entries.pop(service_name, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, service_name: object) -> bool:
        return self.get(str(service_name)) is not None

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.expiry > now)
