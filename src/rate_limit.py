# rate_limit.py
import asyncio, time, os

def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default

class TokenBucket:
    """Asynchronous token bucket rate limiter.

    A token bucket keeps a pool of ``capacity`` tokens which are replenished
    at a constant rate of ``refill_per_sec`` tokens every second.  Gateway
    calls :meth:`acquire` before each REST request; if not enough tokens are
    available the coroutine waits until the bucket refills.

    Parameters
    ----------
    capacity:
        Maximum number of tokens the bucket can hold.
    refill_per_sec:
        Number of tokens added to the bucket every second.
    """

    def __init__(self, capacity: int, refill_per_sec: float):
        if capacity <= 0 or refill_per_sec <= 0:
            raise ValueError("capacity and refill rate must be positive")
        self.capacity = capacity
        self.tokens = capacity
        self.refill_per_sec = refill_per_sec
        self._cond = asyncio.Condition()
        self._last = time.monotonic()
        self._notify_handle = None

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last
        self._last = now
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_sec)

    def _schedule_notify(self, delay: float):
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        handle = self._notify_handle
        if handle is None or handle.when() > when:
            if handle is not None:
                handle.cancel()
            self._notify_handle = loop.call_at(when, self._wake)

    def _wake(self):
        self._notify_handle = None
        async def _notify():
            async with self._cond:
                self._cond.notify_all()
        asyncio.create_task(_notify())

    async def acquire(self, n: int = 1):
        """Acquire ``n`` tokens, waiting asynchronously for a refill if needed."""

        async with self._cond:
            while True:
                self._refill()
                if self.tokens >= n:
                    self.tokens -= n
                    return
                need = max((n - self.tokens) / self.refill_per_sec, 0.005)
                self._schedule_notify(need)
                await self._cond.wait()

def build_rate_limiter():
    """Create a :class:`TokenBucket` configured from environment variables.

    ``SCALP_RATE_LIMIT_RPS``
        Desired refill rate in requests per second (default 8, enough for
        order placement plus the balance and filter polls).
    ``SCALP_RATE_LIMIT_BURST``
        Maximum burst size; defaults to double the refill rate.
    """

    rps = _env_int("SCALP_RATE_LIMIT_RPS", 8)
    burst = _env_int("SCALP_RATE_LIMIT_BURST", rps * 2)
    return TokenBucket(capacity=burst, refill_per_sec=float(rps))
