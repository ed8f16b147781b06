"""Unit tests for the in-memory fixed-window rate limiter."""

import logging
import threading
from unittest.mock import Mock

import pytest

from nervi.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from nervi.adapters.rate_limit.presets import SIGNUP, STRICT

MINUTE = 60.0


def test_allows_up_to_limit_then_blocks(limiter) -> None:
    results = [limiter.check("1.2.3.4", "login", 3, 60_000) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


def test_strict_preset_scenario(limiter) -> None:
    results = [
        limiter.check("1.2.3.4", STRICT.name, STRICT.limit, STRICT.window_ms)
        for _ in range(11)
    ]

    assert all(r.allowed for r in results[:10])
    assert [r.remaining for r in results[:10]] == list(range(9, -1, -1))
    assert results[10].allowed is False
    assert results[10].remaining == 0


def test_signup_preset_scenario(limiter, clock) -> None:
    def call():
        return limiter.check("1.2.3.4", SIGNUP.name, SIGNUP.limit, SIGNUP.window_ms)

    assert all(call().allowed for _ in range(3))

    clock.advance(59 * MINUTE)
    assert call().allowed is False

    clock.advance(2 * MINUTE)
    result = call()
    assert result.allowed is True
    assert result.remaining == SIGNUP.limit - 1


def test_window_reset_does_not_carry_over_count(limiter, clock) -> None:
    for _ in range(7):
        limiter.check("c", "api", 5, 10_000)

    clock.advance(10.0)  # now == reset_at counts as expired
    result = limiter.check("c", "api", 5, 10_000)

    assert result.allowed is True
    assert result.remaining == 4
    assert result.reset_at == pytest.approx(clock() + 10.0)


def test_window_still_open_just_before_reset(limiter, clock) -> None:
    limiter.check("c", "api", 1, 10_000)
    clock.advance(9.999)

    assert limiter.check("c", "api", 1, 10_000).allowed is False


def test_blocked_result_has_retry_hint(limiter, clock) -> None:
    limiter.check("c", "api", 1, 60_000)
    clock.advance(20.5)

    blocked = limiter.check("c", "api", 1, 60_000)

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 40
    assert blocked.limit == 1


def test_allowed_result_has_no_retry_hint(limiter) -> None:
    result = limiter.check("c", "api", 2, 60_000)

    assert result.retry_after_seconds is None
    assert result.reset_at_iso.endswith("+00:00")


def test_remaining_is_never_negative(limiter) -> None:
    remaining = [limiter.check("c", "api", 2, 60_000).remaining for _ in range(6)]

    assert min(remaining) == 0
    assert remaining == [1, 0, 0, 0, 0, 0]


def test_isolated_by_identifier(limiter) -> None:
    assert limiter.check("a", "login", 1, 60_000).allowed is True
    assert limiter.check("a", "login", 1, 60_000).allowed is False

    assert limiter.check("b", "login", 1, 60_000).allowed is True


def test_isolated_by_endpoint(limiter) -> None:
    assert limiter.check("a", "login", 1, 60_000).allowed is True
    assert limiter.check("a", "login", 1, 60_000).allowed is False

    assert limiter.check("a", "signup", 1, 60_000).allowed is True


@pytest.mark.parametrize("identifier", ["", None])
def test_missing_identifier_shares_unknown_bucket(limiter, identifier) -> None:
    assert limiter.check(identifier, "api", 1, 60_000).allowed is True
    assert limiter.check("unknown", "api", 1, 60_000).allowed is False


def test_reject_clears_entry(limiter) -> None:
    limiter.check("a", "strict", 1, 60_000)
    assert limiter.check("a", "strict", 1, 60_000).allowed is False

    assert limiter.reject("a", "strict") is True
    assert limiter.check("a", "strict", 1, 60_000).allowed is True


def test_reject_missing_entry_returns_false(limiter) -> None:
    assert limiter.reject("nobody", "strict") is False


def test_sweep_removes_only_expired_entries(limiter, clock) -> None:
    limiter.check("short", "api", 5, 1_000)
    limiter.check("long", "api", 5, 60_000)
    clock.advance(2.0)

    assert limiter.sweep() == 1
    assert len(limiter) == 1

    # The surviving entry keeps its count.
    result = limiter.check("long", "api", 5, 60_000)
    assert result.remaining == 3


def test_sweep_keeps_entry_expiring_exactly_now(limiter, clock) -> None:
    limiter.check("edge", "api", 5, 1_000)
    clock.advance(1.0)

    assert limiter.sweep() == 0
    assert len(limiter) == 1


def test_stats_track_denials_and_evictions(limiter, clock) -> None:
    limiter.check("a", "api", 1, 1_000)
    limiter.check("a", "api", 1, 1_000)
    clock.advance(5.0)
    limiter.sweep()

    stats = limiter.stats()
    assert stats["denials"] == 1
    assert stats["sweeps"] == 1
    assert stats["evictions"] == 1
    assert stats["entries"] == 0


def test_denial_emits_security_event_with_partial_identifier(limiter, caplog) -> None:
    limiter.check("203.0.113.195", "strict", 1, 60_000)

    with caplog.at_level(logging.WARNING, logger="nervi.security"):
        limiter.check("203.0.113.195", "strict", 1, 60_000)

    events = [r for r in caplog.records if r.name == "nervi.security"]
    assert len(events) == 1
    record = events[0]
    assert record.getMessage() == "security.rate_limit.exceeded"
    assert record.endpoint == "strict"
    assert record.identifier == "203.0.113...."
    assert "203.0.113.195" not in record.identifier


def test_concurrent_checks_admit_at_most_limit() -> None:
    limiter = InMemoryFixedWindowRateLimiter(clock=Mock(return_value=1000.0))
    limit = 50
    admitted: list[bool] = []
    admitted_lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        for _ in range(25):
            allowed = limiter.check("shared", "api", limit, 60_000).allowed
            with admitted_lock:
                admitted.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(admitted) == 200
    assert sum(admitted) == limit


def test_background_sweeper_evicts_and_stops() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(sweep_interval_seconds=0.01, clock=clock)
    limiter.check("a", "api", 1, 1_000)
    clock.return_value = 1002.0

    swept = threading.Event()
    original_sweep = limiter.sweep

    def sweep_and_signal() -> int:
        removed = original_sweep()
        swept.set()
        return removed

    limiter.sweep = sweep_and_signal  # type: ignore[method-assign]
    limiter.start()
    try:
        assert swept.wait(timeout=2.0)
        assert limiter.running is True
    finally:
        limiter.stop()

    assert limiter.running is False
    assert len(limiter) == 0


def test_stop_timeout_keeps_running_sweeper_and_restart_waits(caplog) -> None:
    limiter = InMemoryFixedWindowRateLimiter(sweep_interval_seconds=0.01)
    entered = threading.Event()
    release = threading.Event()

    def slow_sweep() -> int:
        entered.set()
        release.wait(timeout=5.0)
        return 0

    limiter.sweep = slow_sweep  # type: ignore[method-assign]
    limiter.start()
    old = limiter._sweeper
    try:
        assert entered.wait(timeout=2.0)

        with caplog.at_level(logging.WARNING):
            limiter.stop(timeout=0.05)

        assert old.is_alive()
        assert limiter._sweeper is old
        assert limiter.running is False
        assert any(r.getMessage() == "rate_limit.sweeper_stop_timeout" for r in caplog.records)

        release.set()
        limiter.start()

        assert not old.is_alive()
        assert limiter._sweeper is not old
        assert limiter._sweeper.is_alive()
        assert limiter.running is True
    finally:
        release.set()
        limiter.stop()

    assert limiter._sweeper is None


class _InterleavingLock:
    """Real lock that runs ``hook`` just before its Nth acquisition."""

    def __init__(self, hook, on_acquisition: int) -> None:
        self._lock = threading.Lock()
        self._hook = hook
        self._on_acquisition = on_acquisition
        self.acquisitions = 0

    def __enter__(self):
        self.acquisitions += 1
        if self.acquisitions == self._on_acquisition:
            self._hook()
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


def test_sweep_skips_entry_renewed_after_snapshot(clock) -> None:
    limiter = InMemoryFixedWindowRateLimiter(shards=1, clock=clock)
    limiter.check("a", "api", 5, 1_000)
    clock.advance(2.0)

    # The first acquisition takes the snapshot; before the second (the
    # eviction of "a") a request opens a new window for the same key.
    limiter._shards[0].lock = _InterleavingLock(
        lambda: limiter.check("a", "api", 5, 60_000),
        on_acquisition=2,
    )

    assert limiter.sweep() == 0
    assert len(limiter) == 1
    assert limiter.check("a", "api", 5, 60_000).remaining == 3


def test_sweep_does_not_hold_lock_while_filtering(clock) -> None:
    limiter = InMemoryFixedWindowRateLimiter(shards=1, clock=clock)
    for i in range(50):
        limiter.check(f"client-{i}", "api", 5, 1_000 if i % 2 else 60_000)
    clock.advance(2.0)

    lock = _InterleavingLock(lambda: None, on_acquisition=0)
    limiter._shards[0].lock = lock

    assert limiter.sweep() == 25
    # One acquisition for the snapshot plus one per expired entry.
    assert lock.acquisitions == 1 + 25
    assert len(limiter) == 25


def test_start_and_stop_are_idempotent(limiter) -> None:
    limiter.stop()
    limiter.start()
    limiter.start()
    assert limiter.running is True
    limiter.stop()
    limiter.stop()
    assert limiter.running is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sweep_interval_seconds": 0},
        {"shards": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        InMemoryFixedWindowRateLimiter(**kwargs)


@pytest.mark.parametrize(
    "args",
    [
        ("a", "api", 0, 1_000),
        ("a", "api", 1, 0),
        ("a", "", 1, 1_000),
    ],
)
def test_invalid_check_args(limiter, args) -> None:
    with pytest.raises(ValueError):
        limiter.check(*args)
