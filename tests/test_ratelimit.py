from vpsdash.common.ratelimit import FixedWindowRateLimiter


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def incr(self, key: str) -> int:
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key: str, seconds: int) -> None:
        self.ttls[key] = seconds


def test_limit_applies_per_window():
    limiter = FixedWindowRateLimiter(FakeRedis(), limit=2, window_seconds=60)
    assert limiter.hit("user:a", now=0)
    assert limiter.hit("user:a", now=10)
    assert not limiter.hit("user:a", now=59)
    assert limiter.hit("user:a", now=60)


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(FakeRedis(), limit=1)
    assert limiter.hit("user:a", now=0)
    assert limiter.hit("user:b", now=0)
    assert not limiter.hit("user:a", now=1)


def test_counter_expiry_set_once():
    rdb = FakeRedis()
    limiter = FixedWindowRateLimiter(rdb, limit=5, window_seconds=30)
    limiter.hit("user:a", now=0)
    limiter.hit("user:a", now=1)
    assert rdb.ttls == {"ratelimit:user:a:0": 60}
