"""Exit rules for an open long slot.

Checked in precedence order: take profit, stop loss, dynamic stop, timeout.
The dynamic stop is the higher of two optional stops, both derived from the
slot's running maximum so neither can move down once armed:

* breakeven - armed when the best move since entry reached ``BE_PCT``; sits
  at ``entry * (1 + BE_LOCK_PCT)``
* trailing  - armed when the best move reached ``TRAIL_ARM_PCT``; sits at
  ``max_price * (1 - TRAIL_PCT)``
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from models import ExitDecision, PositionSlot

TAKE_PROFIT = "take-profit"
STOP_LOSS = "stop-loss"
DYNAMIC_STOP = "dynamic-stop"
TIMEOUT = "timeout"


class ExitPolicy:
    def __init__(self, config):
        self.tp_pct = config.tp_pct
        self.sl_pct = config.sl_pct
        self.be_enabled = config.be_enabled
        self.be_pct = config.be_pct
        self.be_lock_pct = config.be_lock_pct
        self.trail_enabled = config.trail_enabled
        self.trail_arm_pct = config.trail_arm_pct
        self.trail_pct = config.trail_pct
        self.timeout_ms = config.timeout_ms

    def breakeven_stop(self, slot: PositionSlot) -> Optional[Decimal]:
        if not self.be_enabled:
            return None
        if slot.pnl_pct(slot.max_price_since_entry) < self.be_pct:
            return None
        return slot.entry_price * (1 + self.be_lock_pct)

    def trailing_stop(self, slot: PositionSlot) -> Optional[Decimal]:
        if not self.trail_enabled:
            return None
        if slot.pnl_pct(slot.max_price_since_entry) < self.trail_arm_pct:
            return None
        return slot.max_price_since_entry * (1 - self.trail_pct)

    @staticmethod
    def _higher(*stops: Optional[Decimal]) -> Optional[Decimal]:
        armed = [s for s in stops if s is not None]
        return max(armed) if armed else None

    def dynamic_stop(self, slot: PositionSlot) -> Optional[Decimal]:
        return self._higher(self.breakeven_stop(slot), self.trailing_stop(slot))

    def evaluate(self, slot: PositionSlot, close: Decimal, now: int) -> ExitDecision:
        """Decide whether ``slot`` must be closed at ``close``.

        ``slot.max_price_since_entry`` is expected to already include
        ``close``.
        """
        pnl = slot.pnl_pct(close)
        be_stop = self.breakeven_stop(slot)
        trail_stop = self.trailing_stop(slot)
        dyn_stop = self._higher(be_stop, trail_stop)

        reason = None
        if pnl >= self.tp_pct:
            reason = TAKE_PROFIT
        elif pnl <= -self.sl_pct:
            reason = STOP_LOSS
        elif dyn_stop is not None and close <= dyn_stop:
            reason = DYNAMIC_STOP
        elif now - slot.opened_at >= self.timeout_ms:
            reason = TIMEOUT

        return ExitDecision(
            reason=reason,
            pnl_pct=pnl,
            dynamic_stop=dyn_stop,
            breakeven_armed=be_stop is not None,
            trailing_armed=trail_stop is not None,
        )
