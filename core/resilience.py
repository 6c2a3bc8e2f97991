"""
Call guards for the Shopify Admin API.

Shopify's REST API meters each shop with a leaky bucket (40 request burst,
refilled at 2 requests per second) and answers 429 with a Retry-After
header once the bucket is empty. The client stacks three guards:

- ``RateLimiter`` keeps us under the bucket before a request goes out
- ``retry_with_backoff`` retries transient failures and obeys Retry-After
- ``CircuitBreaker`` stops hammering a shop that keeps failing
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from core.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Backoff schedule for a single Shopify call."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after failed ``attempt`` (1-based).

        A positive ``retry_after`` hint from the shop replaces the computed
        backoff. Both are capped at ``max_delay``.
        """
        if retry_after is not None and retry_after > 0:
            return min(float(retry_after), self.max_delay)

        backoff = self.base_delay * self.exponential_base ** (attempt - 1)
        backoff = min(backoff, self.max_delay)
        if self.jitter:
            backoff += backoff * self.jitter * random.random()
        return backoff


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_requests: int = 1


class CircuitOpenError(Exception):
    """The shop's circuit is open and the call was not attempted."""


@dataclass
class CircuitBreaker:
    """
    Per-shop breaker.

    After ``failure_threshold`` consecutive counted failures the circuit
    opens and calls are rejected with ``CircuitOpenError``. Once
    ``recovery_timeout`` has elapsed, up to ``half_open_requests`` probe
    calls are let through; a successful probe closes the circuit and a
    failed one opens it again.
    """
    name: str = "default"
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0
    half_open_attempts: int = 0

    def __post_init__(self):
        self._lock = asyncio.Lock()

    def _cooled_down(self) -> bool:
        return time.monotonic() - self.last_failure_time >= self.config.recovery_timeout

    async def can_execute(self) -> bool:
        async with self._lock:
            if self.state is CircuitState.CLOSED:
                return True

            if self.state is CircuitState.OPEN:
                if not self._cooled_down():
                    return False
                logger.info(f"Shop {self.name}: circuit half-open, sending probe")
                self.state = CircuitState.HALF_OPEN
                self.half_open_attempts = 0

            if self.half_open_attempts >= self.config.half_open_requests:
                return False
            self.half_open_attempts += 1
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state is CircuitState.HALF_OPEN:
                logger.info(f"Shop {self.name}: probe succeeded, circuit closed")
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.half_open_attempts = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.monotonic()

            if self.state is CircuitState.HALF_OPEN:
                logger.warning(f"Shop {self.name}: probe failed, circuit re-opened")
                self.state = CircuitState.OPEN
                return

            tripped = self.failure_count >= self.config.failure_threshold
            if self.state is CircuitState.CLOSED and tripped:
                logger.warning(
                    f"Shop {self.name}: circuit opened",
                    extra={"failures": self.failure_count},
                )
                self.state = CircuitState.OPEN

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        failure_exceptions: tuple = (Exception,),
        **kwargs,
    ) -> T:
        """
        Await ``func`` if the circuit allows it.

        Only exceptions listed in ``failure_exceptions`` are counted as
        failures. A rejected token (401) says nothing about the shop being
        down, so callers pass the connection-level errors only.
        """
        if not await self.can_execute():
            raise CircuitOpenError(f"Circuit for {self.name} is open, request rejected")

        try:
            result = await func(*args, **kwargs)
        except failure_exceptions:
            await self.record_failure()
            raise
        await self.record_success()
        return result

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN


@dataclass
class RateLimiter:
    """
    Client-side mirror of the shop's request bucket.

    ``rate`` is the refill speed in requests per second and ``burst`` the
    bucket size. The bucket starts full.
    """
    rate: float = 2.0
    burst: int = 40
    tokens: float = field(default=0, init=False)
    last_update: float = field(default=0, init=False)

    def __post_init__(self):
        self.tokens = float(self.burst)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(float(self.burst), self.tokens + (now - self.last_update) * self.rate)
        self.last_update = now

    async def acquire(self, timeout: float = 30.0) -> bool:
        """Take one request slot; False if none frees up within ``timeout`` seconds."""
        deadline = time.monotonic() + timeout

        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return True
                shortfall = (1 - self.tokens) / self.rate

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(shortfall, remaining, 0.5))


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    **kwargs
) -> Any:
    """
    Await ``func`` up to ``config.max_attempts`` times.

    Exceptions outside ``retryable_exceptions`` propagate at once. A
    ``retry_after`` attribute on the raised exception (seconds, taken from
    the 429 response) overrides the exponential delay. The last exception
    is re-raised when every attempt fails.
    """
    config = config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    f"Giving up after {attempt} attempts",
                    extra={"error": str(e)}
                )
                raise

            delay = config.delay_for(attempt, getattr(e, "retry_after", None))
            logger.warning(
                f"Shopify call failed, retry {attempt + 1}/{config.max_attempts} in {delay:.2f}s",
                extra={"attempt": attempt, "delay": round(delay, 2), "error": str(e)}
            )
            await asyncio.sleep(delay)
