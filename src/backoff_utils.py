"""Retry gateway REST calls with exponential backoff.

Only transport-level trouble is retried: timeouts, HTTP 429 and 5xx.  An
order rejected by the exchange is raised immediately; the order guard turns
it into a ``Failed`` outcome and the engine re-evaluates on the next bar.
Retrying an order is safe because every submission carries the same client
order id across attempts.
"""

import asyncio
import contextlib
import os
import random
import re


# Maximum duration allowed for each REST call.
REQUEST_TIMEOUT = float(os.getenv("SCALP_REQUEST_TIMEOUT", "10"))

_RETRY_AFTER = re.compile(r"Retry-After\"?:\s*\"?(\d+)", re.IGNORECASE)


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` for timeouts, rate limiting and server errors."""
    if isinstance(exc, asyncio.TimeoutError):
        return True
    status_code = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if isinstance(status_code, int):
        return status_code == 429 or 500 <= status_code <= 599
    msg = str(exc)
    if " 429 " in msg or "Too Many Requests" in msg:
        return True
    return any(f" {code} " in msg for code in ("500", "502", "503", "504"))


def retry_after(exc: BaseException):
    """Seconds requested by a ``Retry-After`` header echoed in ``exc``."""
    if isinstance(exc, asyncio.TimeoutError):
        return None
    m = _RETRY_AFTER.search(str(exc))
    return float(m.group(1)) if m else None


async def call_with_retries(op, *, limiter, max_attempts=4, base_delay=0.25, timeout=None):
    """Execute ``op`` with retry/backoff logic.

    ``op`` is an async function (no-arg lambda) performing the REST call.
    ``limiter`` controls the request rate.
    ``max_attempts`` and ``base_delay`` configure exponential backoff.
    ``timeout`` overrides :data:`REQUEST_TIMEOUT` for a single call.
    """

    per_call = REQUEST_TIMEOUT if timeout is None else timeout
    attempt = 0
    while True:
        attempt += 1
        await limiter.acquire()
        try:
            task = asyncio.create_task(op())
            try:
                return await asyncio.wait_for(task, timeout=per_call)
            except asyncio.TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                raise
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: PERF203 - classified below
            if not is_retryable(e) or attempt >= max_attempts:
                raise
            ra = retry_after(e)
            # Exponential backoff + jitter
            delay = ra if ra is not None else (base_delay * (2 ** (attempt - 1)))
            delay *= 0.8 + 0.4 * random.random()
            await asyncio.sleep(min(delay, 5.0))
