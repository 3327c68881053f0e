"""
Process-local key/value cache with per-entry time to live.

An entry stays readable while `now - stored_at <= ttl`; the first read after
that evicts it and reports a miss. The store is unbounded unless
`max_entries` is given, in which case the oldest entries are dropped first.
Nothing here is shared between processes: use the Django cache for that.
"""
import logging
import threading
import time
from collections import OrderedDict

logger = logging.getLogger(__name__)

# TTLs in seconds
SHORT = 60
MEDIUM = 5 * 60
LONG = 15 * 60
VERY_LONG = 60 * 60

DEFAULT_TTL = MEDIUM

_MISSING = object()


class TTLCache:
    def __init__(self, clock=time.monotonic, max_entries=None):
        if max_entries is not None and max_entries < 1:
            raise ValueError('max_entries must be a positive integer or None')
        self.clock = clock
        self.max_entries = max_entries
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    def set(self, key, value, ttl=DEFAULT_TTL):
        """Store `value` under `key`, replacing any previous entry"""
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, self.clock(), ttl)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f'Evicted oldest cache entry: {evicted}')

    def get(self, key, default=None):
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default
            value, stored_at, ttl = entry
            if self.clock() - stored_at > ttl:
                del self._entries[key]
                return default
            return value

    def has(self, key):
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return False
            _, stored_at, ttl = entry
            return self.clock() - stored_at <= ttl

    def get_or_set(self, key, factory, ttl=DEFAULT_TTL):
        """Return the cached value or compute it with factory() and cache it"""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value, ttl)
        return value

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix):
        with self._lock:
            for key in [k for k in self._entries if isinstance(k, str) and k.startswith(prefix)]:
                del self._entries[key]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self.has(key)


# Slow-changing reference data (active locations, notification types)
reference_cache = TTLCache()
