"""
Rate Limiter — in-memory sliding window, keyed by client identity.

Each identity keeps the timestamps (ms) of its admitted requests.  On every
check the expired timestamps are dropped; if what remains already fills the
window the request is rejected and the caller is told how long until the
oldest in-window request falls out and frees a slot.

The window storage sits behind ``RateStore`` so the in-process map can be
replaced by a shared store without touching the algorithm.  State is local to
one process: separate workers each keep their own windows.
"""
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional

import config
from models.schemas import RateLimitResult

logger = logging.getLogger("receiptlens.ratelimit")


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateStore(ABC):
    """Storage for per-identity request windows."""

    @abstractmethod
    def get(self, identity: str) -> list[float]:
        """Return the identity's timestamps, oldest first (empty if unknown)."""

    @abstractmethod
    def put(self, identity: str, timestamps: list[float]) -> None:
        """Replace the identity's timestamps."""

    @abstractmethod
    def clear(self) -> None:
        """Forget every identity."""


class InMemoryRateStore(RateStore):
    """
    Process-local store.  Identities are kept in LRU order and the least
    recently seen one is evicted once ``max_identities`` is exceeded, so a
    flood of distinct addresses can't grow the map without bound.
    """

    def __init__(self, max_identities: int = config.MAX_IDENTITIES):
        self._windows: OrderedDict[str, list[float]] = OrderedDict()
        self._max_identities = max_identities

    def get(self, identity: str) -> list[float]:
        return list(self._windows.get(identity, ()))

    def put(self, identity: str, timestamps: list[float]) -> None:
        self._windows[identity] = list(timestamps)
        self._windows.move_to_end(identity)
        while len(self._windows) > self._max_identities:
            evicted, _ = self._windows.popitem(last=False)
            logger.debug("Evicted rate window for %s", evicted)

    def clear(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, identity: str) -> bool:
        return identity in self._windows


class RateLimiter:

    def __init__(
        self,
        store: Optional[RateStore] = None,
        max_requests: int = config.MAX_REQUESTS,
        window_ms: int = config.WINDOW_DURATION_MS,
        clock: Callable[[], float] = monotonic_ms,
    ):
        if max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {max_requests}")
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self.store = store if store is not None else InMemoryRateStore()
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        # One lock for every identity: the critical section is a few list ops.
        self._lock = threading.Lock()

    def check(self, identity: str) -> RateLimitResult:
        """Admit or reject one request from ``identity``; admitted requests are recorded."""
        with self._lock:
            now = self._clock()
            # An entry exactly window_ms old has expired.
            recent = [ts for ts in self.store.get(identity) if now - ts < self.window_ms]

            if len(recent) >= self.max_requests:
                oldest = recent[0]
                retry_after_ms = max(0, math.ceil(self.window_ms - (now - oldest)))
                # Persist the compacted window so expired entries don't linger.
                self.store.put(identity, recent)
                logger.info("Rate limit hit for %s (retry in %d ms)", identity, retry_after_ms)
                return RateLimitResult(allowed=False, retry_after_ms=retry_after_ms)

            recent.append(now)
            self.store.put(identity, recent)
            return RateLimitResult(allowed=True)

    def reset(self) -> None:
        """Drop all windows.  Test hook; nothing on the request path calls this."""
        with self._lock:
            self.store.clear()
