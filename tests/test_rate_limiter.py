import pytest

from b2b_starter.core.exceptions import RateLimitExceededError
from b2b_starter.services.rate_limiter import InMemoryRateLimiter


@pytest.fixture
def clock(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("b2b_starter.services.rate_limiter.time.monotonic", lambda: now[0])
    return now


def test_allows_up_to_limit_within_window():
    limiter = InMemoryRateLimiter()
    assert all(limiter.allow("login:1.2.3.4", 3, 60) for _ in range(3))
    assert not limiter.allow("login:1.2.3.4", 3, 60)
    assert limiter.allow("login:5.6.7.8", 3, 60)


def test_reset_clears_buckets():
    limiter = InMemoryRateLimiter()
    limiter.allow("k", 1, 60)
    assert not limiter.allow("k", 1, 60)
    limiter.reset()
    assert limiter.allow("k", 1, 60)
    assert len(limiter) == 1


def test_window_expiry(clock):
    limiter = InMemoryRateLimiter()
    assert limiter.allow("k", 1, 60)
    assert not limiter.allow("k", 1, 60)
    clock[0] += 61
    assert limiter.allow("k", 1, 60)


def test_enforce_raises_when_exhausted():
    limiter = InMemoryRateLimiter()
    limiter.enforce("k", 1, 60, "slow down")
    with pytest.raises(RateLimitExceededError) as exc:
        limiter.enforce("k", 1, 60, "slow down")
    assert exc.value.status_code == 429
    assert exc.value.message == "slow down"


def test_tracked_keys_never_exceed_max_keys(clock):
    limiter = InMemoryRateLimiter(max_keys=100)
    for i in range(1000):
        clock[0] += 0.001
        assert limiter.allow(f"login:10.0.{i // 256}.{i % 256}", 5, 60)
        assert len(limiter) <= 100


def test_stale_buckets_are_swept_before_live_ones(clock):
    limiter = InMemoryRateLimiter(max_keys=3)
    limiter.allow("old-a", 1, 60)
    limiter.allow("old-b", 1, 60)
    clock[0] += 30
    limiter.allow("live", 1, 60)

    clock[0] += 40
    assert limiter.allow("new", 1, 60)
    assert limiter.allow("newer", 1, 60)

    # "old-a" and "old-b" expired; "live" still holds its hit.
    assert len(limiter) == 3
    assert not limiter.allow("live", 1, 60)


def test_least_recently_used_key_is_evicted_when_all_live(clock):
    limiter = InMemoryRateLimiter(max_keys=2)
    limiter.allow("a", 1, 60)
    limiter.allow("b", 1, 60)
    limiter.allow("a", 1, 60)
    limiter.allow("c", 1, 60)

    assert len(limiter) == 2
    assert not limiter.allow("a", 1, 60)
    # "b" was evicted, so it starts a fresh window.
    assert limiter.allow("b", 1, 60)


def test_max_keys_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryRateLimiter(max_keys=0)
