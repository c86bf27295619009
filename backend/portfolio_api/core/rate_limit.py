import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

log = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int  # seconds until the window resets; 0 when allowed
    reset_after: int  # seconds until the window resets


class CounterStore(ABC):
    """Fixed-window hit counters keyed by client identifier."""

    @abstractmethod
    def hit(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        """Count one hit for ``key`` and return ``(count, reset_at)`` for its current window."""


class MemoryCounterStore(CounterStore):
    """Process-local counters. Not shared between workers or instances."""

    sweep_threshold = 1024

    def __init__(self):
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, float]] = {}

    def hit(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        with self._lock:
            if len(self._windows) >= self.sweep_threshold:
                self._sweep(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if reset_at <= now]
        for k in expired:
            del self._windows[k]

    def __len__(self) -> int:
        return len(self._windows)


class RedisCounterStore(CounterStore):
    """Counters shared through Redis so several instances enforce one budget."""

    def __init__(self, client: Redis, prefix: str = "contact:rl:"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(Redis.from_url(url, decode_responses=False))

    def hit(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        rkey = f"{self._prefix}{key}"
        count = self._client.incr(rkey)
        if count == 1:
            self._client.expire(rkey, window_seconds)
        ttl = self._client.ttl(rkey)
        if ttl is None or ttl < 0:
            # expiry lost between INCR and EXPIRE; restart the window
            self._client.expire(rkey, window_seconds)
            ttl = window_seconds
        return int(count), now + ttl


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        max_requests: int = 5,
        window_seconds: int = 15 * 60,
        enabled: bool = True,
    ):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled

    def _admit(self) -> RateDecision:
        return RateDecision(True, self.max_requests, self.max_requests, 0, self.window_seconds)

    def check(self, identifier: str, now: Optional[float] = None) -> RateDecision:
        if not self.enabled:
            return self._admit()

        now = time.time() if now is None else now
        try:
            count, reset_at = self.store.hit(identifier, self.window_seconds, now)
        except RedisError as exc:
            log.warning(f"[rate_limit] counter store unavailable, admitting {identifier}: {exc}")
            return self._admit()

        reset_after = min(self.window_seconds, max(1, math.ceil(reset_at - now)))
        remaining = max(0, self.max_requests - count)
        if count > self.max_requests:
            log.info(f"[rate_limit] rejected {identifier} count={count} retry_after={reset_after}")
            return RateDecision(False, self.max_requests, 0, reset_after, reset_after)
        return RateDecision(True, self.max_requests, remaining, 0, reset_after)


def build_rate_limiter(settings) -> RateLimiter:
    store: CounterStore
    if settings.redis_url:
        store = RedisCounterStore.from_url(settings.redis_url)
    else:
        store = MemoryCounterStore()
    return RateLimiter(
        store,
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window_seconds,
        enabled=settings.rate_limiting,
    )


def client_identifier(request, trust_proxy: bool = True) -> str:
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
