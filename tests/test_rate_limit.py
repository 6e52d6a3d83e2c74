from leadlink.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_allows_up_to_limit_then_blocks():
    limiter = SlidingWindowRateLimiter(3, 60, clock=FakeClock())
    assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    assert limiter.allow("a")
    assert limiter.allow("b")
    assert not limiter.allow("a")


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    limiter.allow("a")
    clock.now += 30
    limiter.allow("a")
    assert not limiter.allow("a")

    clock.now += 30
    assert limiter.allow("a")
    assert not limiter.allow("a")


def test_rejected_requests_do_not_extend_the_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 10, clock=clock)
    limiter.allow("a")
    for _ in range(5):
        clock.now += 1
        limiter.allow("a")
    clock.now += 5
    assert limiter.allow("a")


def test_reset():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    limiter.allow("a")
    limiter.reset()
    assert limiter.allow("a")


def test_idle_clients_are_forgotten():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(10, 60, clock=clock)
    for i in range(1000):
        limiter.allow(f"10.0.{i // 256}.{i % 256}")
    assert len(limiter) == 1000

    clock.now += 10000
    assert limiter.allow("192.168.1.1")

    assert len(limiter) == 1


def test_active_clients_survive_a_sweep():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock)
    limiter.allow("idle")
    clock.now += 50
    limiter.allow("busy")
    clock.now += 20

    limiter.allow("newcomer")

    assert len(limiter) == 2
    assert not limiter.allow("busy")
