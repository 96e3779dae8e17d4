import inspect
import logging
import os
import time
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Union, Any

logger = logging.getLogger("scalp_bot")

# Internal guard to avoid re-initialising logging repeatedly
_LOGGING_CONFIGURED = False

def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    env = os.getenv("LOG_LEVEL") or os.getenv("SCALP_LOG_LEVEL")
    if env:
        resolved = logging.getLevelName(env.upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO

def setup_logging(log_level: Optional[Union[int, str]] = None) -> None:
    """Initialise console logging in an idempotent, dependency-safe way.

    - Configures root logger once with a sane format.
    - Attaches a StreamHandler to the app logger and disables propagation to prevent duplicates.
    - Respects a provided level, otherwise falls back to env vars or INFO.
    """
    global _LOGGING_CONFIGURED

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    level = _resolve_level(log_level)

    if not _LOGGING_CONFIGURED:
        # Configure root just once; avoid 'force' to keep 3rd party handlers intact
        logging.basicConfig(level=level, format=fmt)
        _LOGGING_CONFIGURED = True

    logger.setLevel(level)
    logger.propagate = False
    if all(isinstance(h, logging.NullHandler) for h in logger.handlers):
        h = logging.StreamHandler()
        h.setLevel(level)
        h.setFormatter(logging.Formatter(fmt))
        logger.addHandler(h)


def round_to_step(qty: Decimal, step: Optional[Decimal]) -> Decimal:
    """Round ``qty`` down to a whole multiple of ``step``.

    A missing or zero step leaves the quantity untouched.
    """
    if not step:
        return qty
    units = (qty / step).to_integral_value(rounding=ROUND_FLOOR)
    return units * step


def to_decimal(raw: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Convert SDK/JSON numbers (str, int, float, Decimal) to ``Decimal``."""
    if raw is None:
        return default
    if isinstance(raw, Decimal):
        return raw
    try:
        return Decimal(str(raw))
    except Exception:
        return default


async def close_quietly(resource: Any) -> None:
    """Close a session/stream object regardless of sync or async ``close``.

    Tries ``aclose`` first and falls back to ``close``.  Errors are logged at
    debug level so shutdown paths can call this unconditionally.
    """
    if not resource:
        return
    try:
        if hasattr(resource, "aclose"):
            await resource.aclose()
            return
        close_method = getattr(resource, "close", None)
        if close_method is None:
            return
        result = close_method()
        if inspect.isawaitable(result):
            await result
    except Exception as exc:  # pragma: no cover - best effort cleanup
        logger.debug("error closing %s: %s", type(resource).__name__, exc)


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
