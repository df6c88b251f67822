import time
import threading


class FixedWindowRateLimiter:
    """Counts hits per key in fixed windows of ``window_seconds``."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict = {}
        self._lock = threading.Lock()

    def hit(self, key) -> bool:
        """Record a request; False once ``key`` has used up its window."""
        now = self._clock()
        with self._lock:
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
            if len(self._windows) > 10000:
                self._prune(now)
            return count <= self.max_requests

    def retry_after(self, key) -> int:
        now = self._clock()
        with self._lock:
            start, _ = self._windows.get(key, (now, 0))
        return max(0, int(self.window_seconds - (now - start)) + 1)

    def _prune(self, now):
        stale = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in stale:
            del self._windows[k]
