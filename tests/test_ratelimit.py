"""Tests for request pacing."""

import threading
import time

import pytest

from perplexity_cli.models import RequestCancelled
from perplexity_cli.ratelimit import RateLimiter


class TestRateLimiter:
    def test_disabled_when_unlimited(self):
        limiter = RateLimiter(0)
        assert not limiter.enabled
        assert limiter.interval == 0

        start = time.monotonic()
        for _ in range(100):
            limiter.wait()
        assert time.monotonic() - start < 0.5

    def test_disabled_ignores_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        RateLimiter(-5).wait(cancel)

    def test_interval_from_requests_per_minute(self):
        assert RateLimiter(60).interval == pytest.approx(1.0)
        assert RateLimiter(120).interval == pytest.approx(0.5)

    def test_first_request_is_immediate(self):
        limiter = RateLimiter(1)
        start = time.monotonic()
        limiter.wait()
        assert time.monotonic() - start < 0.5

    def test_spaces_consecutive_requests(self):
        limiter = RateLimiter(1200)  # 50ms interval
        start = time.monotonic()
        for _ in range(4):
            limiter.wait()
        assert time.monotonic() - start >= 0.14

    def test_concurrent_callers_are_serialized(self):
        limiter = RateLimiter(1200)
        times = []
        lock = threading.Lock()

        def worker():
            limiter.wait()
            with lock:
                times.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        times.sort()
        assert times[-1] - times[0] >= 0.14

    def test_cancelled_before_wait(self):
        limiter = RateLimiter(60)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RequestCancelled):
            limiter.wait(cancel)

    def test_cancelled_while_waiting(self):
        limiter = RateLimiter(1)  # 60s interval
        limiter.wait()

        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(RequestCancelled):
                limiter.wait(cancel)
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5

    def test_one_per_second(self):
        limiter = RateLimiter(60)
        start = time.monotonic()
        limiter.wait()
        limiter.wait()
        assert time.monotonic() - start >= 0.95

    def test_cancelled_caller_not_blocked_by_sleeping_caller(self):
        limiter = RateLimiter(1)  # 60s interval
        limiter.wait()

        sleeper_cancel = threading.Event()
        outcomes = []

        def sleeper_wait():
            try:
                limiter.wait(sleeper_cancel)
            except RequestCancelled:
                outcomes.append("cancelled")

        sleeper = threading.Thread(target=sleeper_wait)
        sleeper.start()
        time.sleep(0.05)

        cancel = threading.Event()
        cancel.set()
        start = time.monotonic()
        try:
            with pytest.raises(RequestCancelled):
                limiter.wait(cancel)
            assert time.monotonic() - start < 0.2
        finally:
            sleeper_cancel.set()
            sleeper.join(timeout=5)
        assert not sleeper.is_alive()
        assert outcomes == ["cancelled"]
