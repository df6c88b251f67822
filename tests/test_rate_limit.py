from rate_limit import FixedWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_allows_up_to_limit_then_blocks():
    limiter = FixedWindowRateLimiter(3, 60, clock=FakeClock())
    assert [limiter.hit("a") for _ in range(4)] == [True, True, True, False]


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(1, 60, clock=FakeClock())
    assert limiter.hit("a")
    assert limiter.hit("b")
    assert not limiter.hit("a")


def test_window_resets():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(1, 60, clock=clock)
    assert limiter.hit("a")
    assert not limiter.hit("a")
    clock.now = 60
    assert limiter.hit("a")


def test_retry_after_counts_down():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(1, 60, clock=clock)
    limiter.hit("a")
    clock.now = 20
    assert limiter.retry_after("a") == 41
