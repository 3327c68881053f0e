"""In-process counters for API errors, shown in the status snapshot"""
import threading
import time
from collections import deque

from django.dispatch import receiver

from backend.core.exceptions import api_error

WINDOW_SECONDS = 24 * 60 * 60


class ErrorStats:
    def __init__(self, clock=time.time):
        self.clock = clock
        self._lock = threading.Lock()
        self._recent = deque()
        self.total = 0
        self.critical = 0

    def record(self, unhandled=False):
        now = self.clock()
        with self._lock:
            self.total += 1
            if unhandled:
                self.critical += 1
            self._recent.append(now)
            self._prune(now)

    def _prune(self, now):
        while self._recent and now - self._recent[0] > WINDOW_SECONDS:
            self._recent.popleft()

    def snapshot(self):
        with self._lock:
            self._prune(self.clock())
            return {
                'totalErrors': self.total,
                'errorsLast24h': len(self._recent),
                'criticalErrors': self.critical,
            }

    def reset(self):
        with self._lock:
            self._recent.clear()
            self.total = 0
            self.critical = 0


error_stats = ErrorStats()


@receiver(api_error)
def count_api_error(sender, status_code=500, unhandled=False, **kwargs):
    error_stats.record(unhandled=unhandled)
