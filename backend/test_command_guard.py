"""
Admission control: processing flag and per-session sliding-window budget.
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from app.agent.command_guard import CommandGuard
from app.agent.session_store import InMemorySessionStore
from app.core.exceptions import CommandInProgressError, RateLimitExceededError
from app.core.rate_limiter import RateLimiter


class ManualClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_guard(requests=2, window=60):
    clock = ManualClock()
    store = InMemorySessionStore()
    return CommandGuard(store, RateLimiter(requests=requests, window=window, clock=clock)), store, clock


def test_sliding_window():
    print("\n" + "=" * 70)
    print("TEST 1: Sliding window budget")
    print("=" * 70)

    limiter = RateLimiter(requests=2, window=60, clock=ManualClock())
    assert limiter.is_allowed("a") == (True, 1)
    limiter.clock.now += 10
    assert limiter.is_allowed("a") == (True, 0)
    assert limiter.is_allowed("a") == (False, 0)
    assert limiter.retry_after("a") == 51
    assert limiter.is_allowed("b")[0], "budgets are per client"

    limiter.clock.now += 51
    assert limiter.is_allowed("a")[0], "oldest entry left the window"
    limiter.reset("a")
    assert limiter.retry_after("a") == 0
    print("  PASS: rolling window, retry-after from the oldest entry")


def test_guard_rate_limit():
    guard, _, clock = make_guard()
    guard.check_rate("s1")
    guard.check_rate("s1")
    with pytest.raises(RateLimitExceededError) as excinfo:
        guard.check_rate("s1")
    assert excinfo.value.retry_after == 61
    assert excinfo.value.session_id == "s1"

    clock.now += 61
    guard.check_rate("s1")
    print("  PASS: third command in a minute rejected")


def test_admit_holds_flag():
    print("\n" + "=" * 70)
    print("TEST 2: Processing flag")
    print("=" * 70)

    guard, store, _ = make_guard(requests=1)

    with guard.admit("s1"):
        assert store.is_processing("s1")
        with pytest.raises(CommandInProgressError):
            with guard.admit("s1"):
                pass
    assert not store.is_processing("s1")
    print("  PASS: nested admit rejected, flag released")

    # The first admit spent the only slot
    with pytest.raises(RateLimitExceededError):
        with guard.admit("s1"):
            pass
    assert not store.is_processing("s1"), "flag released when the rate check fails"

    with pytest.raises(ValueError):
        with guard.admit("s2", count_rate=False):
            raise ValueError("boom")
    assert not store.is_processing("s2")
    print("  PASS: flag released on errors")


def test_busy_does_not_spend_budget():
    guard, store, _ = make_guard(requests=1)
    store.try_acquire("s1")
    with pytest.raises(CommandInProgressError):
        with guard.admit("s1"):
            pass
    store.release("s1")

    with guard.admit("s1"):
        pass
    print("  PASS: rejected duplicate keeps the slot")


def main():
    test_sliding_window()
    test_guard_rate_limit()
    test_admit_holds_flag()
    test_busy_does_not_spend_budget()
    print("\n✅ All guard tests passed!")


if __name__ == "__main__":
    main()
