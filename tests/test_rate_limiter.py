"""Tests for the per-tenant fixed-window rate limiter."""

from whatsapp_sessions.sessions.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_admits_up_to_cap_then_refuses():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=900, max_requests=10, clock=clock)

    assert all(limiter.admit(1) for _ in range(10))
    assert limiter.admit(1) is False
    assert limiter.admit(1) is False


def test_window_reopens_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=900, max_requests=2, clock=clock)
    limiter.admit(1)
    limiter.admit(1)
    assert not limiter.admit(1)

    clock.now += 900.5
    assert limiter.admit(1)


def test_tenants_are_independent():
    limiter = RateLimiter(max_requests=1, clock=FakeClock())
    assert limiter.admit(1)
    assert not limiter.admit(1)
    assert limiter.admit(2)


def test_is_limited_does_not_count():
    limiter = RateLimiter(max_requests=2, clock=FakeClock())
    assert not limiter.is_limited(1)
    limiter.admit(1)
    for _ in range(5):
        assert not limiter.is_limited(1)
    limiter.admit(1)
    assert limiter.is_limited(1)


def test_sweep_removes_expired_windows():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=10, clock=clock)
    limiter.admit(1)
    clock.now += 5
    limiter.admit(2)

    clock.now += 6
    assert limiter.sweep() == 1
    assert len(limiter) == 1

    clock.now += 10
    assert limiter.sweep() == 1
    assert len(limiter) == 0
