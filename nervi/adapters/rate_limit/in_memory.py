"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit,
  and a restart silently resets every counter.
- Thread-safe: state is sharded across several dicts, each behind its own
  lock, so one key's read-modify-write is atomic without a global lock.
- Fixed windows admit up to ``2 x limit`` requests across a window boundary
  (a burst at the end of one window followed by a burst at the start of the
  next). This is accepted in exchange for O(1) state per key.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from nervi.adapters.rate_limit.base import (
    UNKNOWN_IDENTIFIER,
    AbstractRateLimiter,
    RateLimitResult,
)
from nervi.core.audit import RATE_LIMIT_EXCEEDED, log_security_event, partial_identifier

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60
DEFAULT_SHARDS = 16

_Key = tuple[str, str]


@dataclass
class _WindowState:
    count: int
    reset_at: float


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[_Key, _WindowState] = {}


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Fixed-window request counter keyed by ``(endpoint, identifier)``.

    Entries are created lazily on the first request for a key, replaced by a
    fresh window when read at or after expiry, and evicted by a background
    sweep once expired so one-off clients do not accumulate.
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        shards: int = DEFAULT_SHARDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            sweep_interval_seconds: Period of the background expiry sweep.
            shards: Number of independently locked partitions.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If sweep_interval_seconds or shards are invalid.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        if shards < 1:
            raise ValueError("shards must be >= 1")

        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._shards = [_Shard() for _ in range(shards)]

        self._stats_lock = threading.Lock()
        self._denials = 0
        self._sweeps = 0
        self._evictions = 0

        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryFixedWindowRateLimiter(shards={len(self._shards)}, "
            f"sweep_interval_seconds={self._sweep_interval}, entries={len(self)})"
        )

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    def _shard_for(self, key: _Key) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    @staticmethod
    def _build_key(identifier: str | None, endpoint: str) -> _Key:
        if not endpoint:
            raise ValueError("endpoint must be a non-empty string")
        return endpoint, identifier or UNKNOWN_IDENTIFIER

    def check(
        self,
        identifier: str | None,
        endpoint: str,
        limit: int,
        window_ms: int,
    ) -> RateLimitResult:
        """Count one request for ``(endpoint, identifier)``.

        The only side effect is the counter update for that key. A request
        over the limit is still counted, so a client hammering a closed
        window keeps it closed until ``reset_at``.

        Raises:
            ValueError: If endpoint is empty or limit/window_ms are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        key = self._build_key(identifier, endpoint)
        shard = self._shard_for(key)
        now = self._clock()

        with shard.lock:
            state = shard.entries.get(key)
            if state is None or now >= state.reset_at:
                state = _WindowState(count=0, reset_at=now + window_ms / 1000)
                shard.entries[key] = state
            state.count += 1
            count = state.count
            reset_at = state.reset_at

        if count > limit:
            with self._stats_lock:
                self._denials += 1
            log_security_event(
                RATE_LIMIT_EXCEEDED,
                endpoint=key[0],
                identifier=partial_identifier(key[1]),
                count=count,
                limit=limit,
            )
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
            )

        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after_seconds=None,
        )

    def reject(self, identifier: str | None, endpoint: str) -> bool:
        key = self._build_key(identifier, endpoint)
        shard = self._shard_for(key)
        with shard.lock:
            removed = shard.entries.pop(key, None) is not None
        logger.debug(
            "rate_limit.entry_cleared",
            extra={"endpoint": endpoint, "removed": removed},
        )
        return removed

    def sweep(self) -> int:
        """Evict every entry whose window expired before now.

        Lock hold time per step is bounded as follows:

        - snapshot: one ``list()`` copy of a shard's items, done in C with no
          per-entry Python work. This is proportional to the shard size, so
          ``shards`` should grow with the expected number of live clients
          (a single shard makes the copy a global pause).
        - expiry test: done on the snapshot, outside any lock.
        - eviction: one lock acquisition per expired entry, covering a single
          re-check and deletion.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                snapshot = list(shard.entries.items())
            candidates = [key for key, state in snapshot if state.reset_at < now]
            for key in candidates:
                with shard.lock:
                    state = shard.entries.get(key)
                    # Re-check: a request may have opened a new window meanwhile.
                    if state is not None and state.reset_at < now:
                        del shard.entries[key]
                        removed += 1

        with self._stats_lock:
            self._sweeps += 1
            self._evictions += removed

        logger.debug(
            "rate_limit.sweep",
            extra={"removed": removed, "entries": len(self)},
        )
        return removed

    def stats(self) -> dict[str, int | float]:
        """Return limiter counters without exposing identifiers."""
        with self._stats_lock:
            return {
                "entries": len(self),
                "shards": len(self._shards),
                "sweep_interval_seconds": self._sweep_interval,
                "sweeps": self._sweeps,
                "evictions": self._evictions,
                "denials": self._denials,
            }

    @property
    def running(self) -> bool:
        """True while a sweeper thread is alive and has not been told to stop."""
        return (
            self._sweeper is not None
            and self._sweeper.is_alive()
            and not self._stop_event.is_set()
        )

    def start(self) -> None:
        """Start the recurring background sweep. Idempotent.

        If a previous sweeper outlived its ``stop()`` timeout, wait for it to
        exit before starting the next one, so at most one sweeper runs.
        """
        if self.running:
            return
        previous = self._sweeper
        if previous is not None and previous.is_alive():
            previous.join()
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper,
            name="rate-limit-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.info(
            "rate_limit.sweeper_started",
            extra={"sweep_interval_seconds": self._sweep_interval},
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the background sweep and wait up to ``timeout`` for it to exit.

        The thread reference is kept while the sweeper is still finishing a
        sweep, so a later ``start()`` can wait for it. Idempotent.
        """
        sweeper = self._sweeper
        if sweeper is None:
            return
        self._stop_event.set()
        sweeper.join(timeout)
        if sweeper.is_alive():
            logger.warning("rate_limit.sweeper_stop_timeout", extra={"timeout_s": timeout})
            return
        self._sweeper = None
        logger.info("rate_limit.sweeper_stopped")

    def _run_sweeper(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("rate_limit.sweep_failed")
