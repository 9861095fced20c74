"""
Brief: Tests for RetryPolicy backoff.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from kvdns.config import Settings
from kvdns.errors import FatalError, TransientError
from kvdns.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, exc=None):
        self.failures = failures
        self.exc = exc or TransientError("busy")
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return value


def test_succeeds_after_transient_failures():
    sleeps = []
    fn = Flaky(3)
    policy = RetryPolicy(attempts=5, initial_delay=0.1, max_delay=0.3)
    assert policy.call(fn, "ok", sleep=sleeps.append) == "ok"
    assert fn.calls == 4
    assert sleeps == [0.1, 0.2, 0.3]


def test_gives_up_after_attempts():
    sleeps = []
    fn = Flaky(10)
    with pytest.raises(TransientError):
        RetryPolicy(attempts=3).call(fn, "x", sleep=sleeps.append)
    assert fn.calls == 3
    assert len(sleeps) == 2


def test_fatal_errors_are_not_retried():
    fn = Flaky(1, FatalError("bad line"))
    with pytest.raises(FatalError):
        RetryPolicy().call(fn, "x", sleep=lambda d: None)
    assert fn.calls == 1


def test_from_settings():
    policy = RetryPolicy.from_settings(Settings(retry_attempts=2, retry_initial_delay=0.5, retry_max_delay=1.0))
    assert policy == RetryPolicy(2, 0.5, 1.0)
