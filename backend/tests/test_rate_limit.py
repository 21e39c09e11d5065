import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from entry.core.rate_limit import RateLimiter, get_limiter, reset_state  # noqa: E402


def test_limiter_blocks_after_limit_within_window():
    limiter = RateLimiter("test", limit=2, window_seconds=60)
    assert limiter.check("1.2.3.4", now=100.0) == (True, 0)
    assert limiter.check("1.2.3.4", now=101.0) == (True, 0)
    allowed, retry_after = limiter.check("1.2.3.4", now=102.0)
    assert allowed is False
    assert retry_after == 58


def test_limiter_keys_are_independent():
    limiter = RateLimiter("test", limit=1, window_seconds=60)
    assert limiter.check("a", now=0.0)[0] is True
    assert limiter.check("b", now=0.0)[0] is True
    assert limiter.check("a", now=1.0)[0] is False


def test_window_slides():
    limiter = RateLimiter("test", limit=1, window_seconds=10)
    assert limiter.check("ip", now=0.0)[0] is True
    assert limiter.check("ip", now=5.0)[0] is False
    assert limiter.check("ip", now=10.5)[0] is True


def test_zero_limit_always_blocks():
    limiter = RateLimiter("test", limit=0, window_seconds=30)
    assert limiter.check("ip", now=0.0) == (False, 30)


def test_reset_state_clears_registered_limiters():
    limiter = get_limiter("test_reset_state", 1, 60)
    assert limiter.check("ip", now=0.0)[0] is True
    assert limiter.check("ip", now=1.0)[0] is False
    reset_state()
    assert limiter.check("ip", now=2.0)[0] is True
