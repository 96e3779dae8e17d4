# lifecycle.py
"""Position slot state machine (FLAT <-> OPEN per slot index).

:class:`PositionLifecycle` is the only object that creates, updates or
destroys :class:`PositionSlot` instances.  Orders are requested from the
:class:`order_guard.OrderGuard`; a slot changes state only when the guard
reports a fill, so skipped or failed orders leave everything as it was and
the same decision is simply re-evaluated on the next pass.
P&L is realized on the quantity actually sold.  A partly filled exit keeps
the slot open with the remainder; a remainder below one lot step is logged as
dust and the slot is released.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from models import (
    Filled,
    LifecycleReport,
    PositionSlot,
    SessionStats,
    Side,
    SlotView,
)
from strategy.exits import ExitPolicy
from strategy.signals import SignalResult
from utils import logger, round_to_step


class PositionLifecycle:
    def __init__(self, config, guard, stats: SessionStats, exits: Optional[ExitPolicy] = None):
        self.max_slots = config.max_slots
        self.sizing_policy = config.sizing_policy
        self.budget_usd = config.budget_usd
        self.guard = guard
        self.stats = stats
        self.exits = exits or ExitPolicy(config)
        self._slots: List[Optional[PositionSlot]] = [None] * self.max_slots

    # ------------------------------------------------------------------
    @property
    def slots(self) -> List[PositionSlot]:
        return [s for s in self._slots if s is not None]

    @property
    def open_count(self) -> int:
        return sum(1 for s in self._slots if s is not None)

    def slot_at(self, idx: int) -> Optional[PositionSlot]:
        return self._slots[idx]

    def entry_allowance(self, free_balance: Optional[Decimal]) -> Optional[Decimal]:
        """Quote balance one new entry may draw on under the sizing policy."""
        if free_balance is None or self.sizing_policy == "shared":
            return free_balance
        flat = self.max_slots - self.open_count
        return free_balance / flat if flat > 0 else Decimal(0)

    def views(self, price: Optional[Decimal]) -> List[SlotView]:
        out = []
        for slot in self.slots:
            mark = price if price is not None else slot.entry_price
            out.append(
                SlotView(
                    index=slot.index,
                    entry_price=slot.entry_price,
                    quantity=slot.quantity,
                    opened_at=slot.opened_at,
                    max_price_since_entry=slot.max_price_since_entry,
                    pnl_pct=slot.pnl_pct(mark),
                    unrealized=(mark - slot.entry_price) * slot.quantity,
                    dynamic_stop=self.exits.dynamic_stop(slot),
                )
            )
        return out

    # ------------------------------------------------------------------
    async def on_bar(
        self,
        close: Decimal,
        signal: SignalResult,
        now: int,
        free_balance: Optional[Decimal] = None,
    ) -> LifecycleReport:
        """Run one evaluation pass: exits for open slots, then a possible entry."""
        report = LifecycleReport()
        open_at_start = self.open_count
        freed: set[int] = set()

        for idx, slot in enumerate(self._slots):
            if slot is None:
                continue
            slot.observe(close)
            decision = self.exits.evaluate(slot, close, now)
            if not decision.should_exit:
                continue

            outcome = await self.guard.submit(Side.SELL, close, quantity=slot.quantity)
            report.exits.append((idx, decision, outcome))
            if not isinstance(outcome, Filled):
                logger.info(
                    "exit deferred | slot=%d reason=%s outcome=%s",
                    idx,
                    decision.reason,
                    outcome,
                )
                continue

            sold = min(outcome.quantity, slot.quantity)
            pnl = (outcome.price - slot.entry_price) * sold
            self.stats.accrue(pnl)
            residual = slot.quantity - sold
            if residual > 0 and round_to_step(residual, self.guard.filters.step_size) > 0:
                slot.quantity = residual
                logger.info(
                    "slot reduced | slot=%d reason=%s sold=%s left=%s pnl=%s realized_total=%s",
                    idx,
                    decision.reason,
                    sold,
                    residual,
                    pnl,
                    self.stats.realized_total,
                )
                continue

            if residual > 0:
                logger.warning(
                    "exit dust left | slot=%d qty=%s step=%s",
                    idx,
                    residual,
                    self.guard.filters.step_size,
                )
            self._slots[idx] = None
            freed.add(idx)
            logger.info(
                "slot closed | slot=%d reason=%s entry=%s exit=%s qty=%s pnl=%s realized_total=%s",
                idx,
                decision.reason,
                slot.entry_price,
                outcome.price,
                sold,
                pnl,
                self.stats.realized_total,
            )

        if not signal.should_enter:
            return report

        self.stats.signals += 1
        if open_at_start >= self.max_slots:
            return report

        idx = next(
            i for i, s in enumerate(self._slots) if s is None and i not in freed
        )
        outcome = await self.guard.submit(
            Side.BUY,
            close,
            budget=self.budget_usd,
            free_balance=self.entry_allowance(free_balance),
        )
        report.entry = outcome
        if isinstance(outcome, Filled):
            self._slots[idx] = PositionSlot(
                index=idx,
                entry_price=close,
                quantity=outcome.quantity,
                opened_at=now,
                max_price_since_entry=close,
                order_ref=outcome.order_ref,
            )
            logger.info(
                "slot opened | slot=%d entry=%s qty=%s reasons=%s",
                idx,
                close,
                outcome.quantity,
                ",".join(signal.reasons),
            )
        return report
