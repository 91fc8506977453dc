import pytest
from listing_monitor.throttle import TokenBucket


class ManualTime:
    def __init__(self):
        self.t = 0.0
        self.sleeps = []

    def clock(self):
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.t += seconds


def test_burst_up_to_capacity_then_refuses():
    tm = ManualTime()
    bucket = TokenBucket(rate=10, clock=tm.clock, sleep=tm.sleep)
    assert all(bucket.try_acquire() for _ in range(10))
    assert bucket.try_acquire() is False


def test_refills_at_rate():
    tm = ManualTime()
    bucket = TokenBucket(rate=10, clock=tm.clock, sleep=tm.sleep)
    for _ in range(10):
        bucket.try_acquire()
    tm.t += 0.1
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False


def test_acquire_sleeps_for_next_token():
    tm = ManualTime()
    bucket = TokenBucket(rate=10, clock=tm.clock, sleep=tm.sleep)
    for _ in range(10):
        bucket.acquire()
    assert tm.sleeps == []
    waited = bucket.acquire()
    assert waited == pytest.approx(0.1)
    assert tm.sleeps == [pytest.approx(0.1)]


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        TokenBucket(rate=0)
