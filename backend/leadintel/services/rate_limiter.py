# backend/leadintel/services/rate_limiter.py
"""
Per-provider rate limiting

Each provider gets a token bucket per configured window (second, minute,
day). Buckets refill continuously from a monotonic clock. Acquisition never
waits: a denied provider is simply skipped by the waterfall.

State lives in-process; multiple worker processes each enforce their own
limits.
"""

import time
from typing import Callable, Dict, Optional
import logging

from leadintel.providers.base import RateLimit

logger = logging.getLogger(__name__)


WINDOW_SECONDS = {
    "per_second": 1.0,
    "per_minute": 60.0,
    "per_day": 86400.0,
}


class TokenBucket:
    """Continuously refilling bucket of `capacity` tokens per `refill_period` seconds"""
    
    def __init__(
        self,
        capacity: int,
        refill_period: float,
        clock: Callable[[], float] = time.monotonic
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = float(capacity)
        self.refill_rate = capacity / refill_period  # tokens per second
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
    
    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now
    
    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens
    
    def can_take(self) -> bool:
        self._refill()
        return self._tokens >= 1.0
    
    def take(self):
        self._tokens -= 1.0


class ProviderRateLimiter:
    """
    All windows for one provider.
    
    try_acquire() takes one token from every window or from none, so a
    denial in the daily window does not burn the per-second budget.
    """
    
    def __init__(
        self,
        provider: str,
        limits: RateLimit,
        clock: Callable[[], float] = time.monotonic
    ):
        self.provider = provider
        self.limits = limits
        self.buckets: Dict[str, TokenBucket] = {}
        for window, seconds in WINDOW_SECONDS.items():
            capacity = getattr(limits, window)
            if capacity:
                self.buckets[window] = TokenBucket(capacity, seconds, clock=clock)
        
        self.granted = 0
        self.denied = 0
    
    def try_acquire(self) -> bool:
        # No awaits between check and take: atomic on the event loop
        blocked = [w for w, bucket in self.buckets.items() if not bucket.can_take()]
        if blocked:
            self.denied += 1
            logger.debug(f"🛑 {self.provider} rate limited ({', '.join(blocked)})")
            return False
        
        for bucket in self.buckets.values():
            bucket.take()
        self.granted += 1
        return True
    
    def get_stats(self) -> Dict:
        return {
            "provider": self.provider,
            "granted": self.granted,
            "denied": self.denied,
            "remaining": {w: int(b.tokens) for w, b in self.buckets.items()},
        }


class RateLimiterRegistry:
    """Maps provider name to its limiter"""
    
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._limiters: Dict[str, ProviderRateLimiter] = {}
    
    def register(self, provider: str, limits: RateLimit) -> ProviderRateLimiter:
        limiter = ProviderRateLimiter(provider, limits, clock=self._clock)
        self._limiters[provider] = limiter
        return limiter
    
    def get(self, provider: str) -> Optional[ProviderRateLimiter]:
        return self._limiters.get(provider)
    
    def try_acquire(self, provider: str) -> bool:
        """Unregistered providers are unlimited"""
        limiter = self._limiters.get(provider)
        if limiter is None:
            return True
        return limiter.try_acquire()
    
    def get_stats(self) -> Dict[str, Dict]:
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}
