"""Entry signal for the one-second bar scalper.

Two data-quality gates (bar freshness and tick latency) are checked before
anything else: when either fails the evaluation stops and reports
``blocked`` without looking at price action.  Otherwise a volume gate and
three price triggers are computed:

* rebound  - last close at least ``REBOUND_PCT`` above the recent low
* breakout - last close at least ``BREAKOUT_PCT`` above the high of the
  preceding ``WINDOW_SEC`` bars and higher than the previous close
* momentum - absolute close-to-close move of at least ``MOMENTUM_PCT``

Entering requires the volume gate and any one trigger.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from models import SecondBar

ENTER = "enter"
ABSENT = "absent"
BLOCKED = "blocked"
INSUFFICIENT = "insufficient"

MIN_BARS = 4


@dataclass(frozen=True)
class SignalResult:
    status: str
    fresh: bool = False
    latency_ok: bool = False
    volume_ok: bool = False
    rebound: bool = False
    breakout: bool = False
    momentum: bool = False
    reasons: Tuple[str, ...] = ()
    close: Optional[Decimal] = None

    @property
    def should_enter(self) -> bool:
        return self.status == ENTER

    @property
    def blocked(self) -> bool:
        return self.status == BLOCKED


class SignalEvaluator:
    """Stateless evaluator; thresholds come from :class:`ScalpConfig`."""

    def __init__(self, config):
        self.window_sec = config.window_sec
        self.vol_tps_factor = config.vol_tps_factor
        self.rebound_pct = config.rebound_pct
        self.breakout_pct = config.breakout_pct
        self.momentum_pct = config.momentum_pct
        self.max_bar_stale_ms = config.max_bar_stale_ms
        self.max_tick_latency_ms = config.max_tick_latency_ms

    @property
    def lookback(self) -> int:
        """Number of bars the evaluator needs to see."""
        return max(self.window_sec, MIN_BARS)

    def evaluate(
        self,
        bars: Iterable[SecondBar],
        latency_ms: Optional[int],
        now: int,
    ) -> SignalResult:
        series = list(bars)
        if len(series) < MIN_BARS:
            return SignalResult(INSUFFICIENT, reasons=("insufficient-bars",))

        last = series[-1]
        prev = series[-2]

        fresh = now - last.second * 1000 <= self.max_bar_stale_ms
        latency_ok = latency_ms is None or latency_ms <= self.max_tick_latency_ms
        if not (fresh and latency_ok):
            reasons = []
            if not fresh:
                reasons.append("stale-bar")
            if not latency_ok:
                reasons.append("slow-tick")
            return SignalResult(
                BLOCKED,
                fresh=fresh,
                latency_ok=latency_ok,
                reasons=tuple(reasons),
                close=last.close,
            )

        recent = series[-self.window_sec:]
        recent_low = min(b.low for b in recent)
        # the breakout reference excludes the bar being tested: its own high
        # is never below its close
        prior = series[-self.window_sec - 1:-1]
        recent_high = max(b.high for b in prior)

        volume_ok = last.trades >= prev.trades * self.vol_tps_factor
        rebound = last.close >= recent_low * (1 + self.rebound_pct)
        breakout = (
            last.close >= recent_high * (1 + self.breakout_pct)
            and last.close > prev.close
        )
        momentum = (
            prev.close > 0
            and abs(last.close - prev.close) / prev.close >= self.momentum_pct
        )

        reasons = [
            name
            for name, hit in (
                ("rebound", rebound),
                ("breakout", breakout),
                ("momentum", momentum),
            )
            if hit
        ]
        if not volume_ok:
            reasons.append("low-volume")
        enter = volume_ok and (rebound or breakout or momentum)
        return SignalResult(
            ENTER if enter else ABSENT,
            fresh=fresh,
            latency_ok=latency_ok,
            volume_ok=volume_ok,
            rebound=rebound,
            breakout=breakout,
            momentum=momentum,
            reasons=tuple(reasons),
            close=last.close,
        )
