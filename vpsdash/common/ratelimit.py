"""Fixed-window request counters kept in Redis.

Counters live in the shared cache so every gateway replica sees the same
window; nothing is kept in process memory.
"""

from time import time


class FixedWindowRateLimiter:
    """Allow at most `limit` hits per `window_seconds` for one key."""

    def __init__(self, rdb, limit: int, window_seconds: int = 60, prefix: str = "ratelimit") -> None:
        self.rdb = rdb
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    def _window_key(self, key: str, now: float) -> str:
        window = int(now // self.window_seconds)
        return f"{self.prefix}:{key}:{window}"

    def hit(self, key: str, now: float | None = None) -> bool:
        """Count one request; return False once the window is exhausted."""

        now = time() if now is None else now
        window_key = self._window_key(key, now)
        count = self.rdb.incr(window_key)
        if count == 1:
            # Keep the counter slightly longer than the window it covers.
            self.rdb.expire(window_key, self.window_seconds * 2)
        return count <= self.limit
