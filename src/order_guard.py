# order_guard.py
"""The only component allowed to talk to the exchange gateway.

Every submission goes through the same checks, in order: one order in flight
at a time, a usable reference price, the per-side cooldown, a known quote
balance when sizing from a budget, quantity resolution (fixed quantity
rounded down to the lot step, or budget sizing), minimum quantity and
minimum notional.  Surviving orders get a fresh client
order id and are sent as MARKET orders.

The guard never touches position state.  It answers with :class:`Filled`,
:class:`Skipped` or :class:`Failed` and lets the caller decide.  A failed
call does not start the cooldown, so the next eligible bar may try again.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from id_generator import ClientOrderIdGenerator
from models import (
    FillEvent,
    Filled,
    Failed,
    OrderOutcome,
    SessionStats,
    Side,
    Skipped,
    SymbolFilters,
)
from utils import logger, now_ms, round_to_step

SKIP_IN_FLIGHT = "in-flight"
SKIP_NO_PRICE = "no-price"
SKIP_COOLDOWN = "cooldown"
SKIP_MIN_QTY = "min-qty"
SKIP_MIN_NOTIONAL = "min-notional"
SKIP_NO_BALANCE = "no-balance"


class OrderGuard:
    def __init__(
        self,
        gateway,
        config,
        stats: SessionStats,
        clock: Callable[[], int] = now_ms,
        id_generator: Optional[ClientOrderIdGenerator] = None,
    ):
        self._gateway = gateway
        self.symbol = config.market
        self.cooldown_ms = config.cooldown_ms
        self.budget_fraction = config.budget_fraction
        self.stats = stats
        self._clock = clock
        self._ids = id_generator or ClientOrderIdGenerator(config.order_prefix)

        self.filters = SymbolFilters(
            step_size=config.default_step_size,
            min_qty=Decimal(0),
            tick_size=Decimal(0),
            min_notional=config.default_min_notional,
        )
        self._last_submit: Dict[Side, int] = {}
        self._in_flight = False
        self._subscribers: List[Callable[[FillEvent], None]] = []
        self.last_latency_ms: Optional[float] = None

    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[FillEvent], None]) -> None:
        """Register ``callback`` to be told about every fill."""
        self._subscribers.append(callback)

    def set_filters(self, filters: SymbolFilters) -> None:
        self.filters = filters

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def last_submit(self, side: Side) -> Optional[int]:
        return self._last_submit.get(side)

    def cooldown_remaining(self, side: Side, now: int) -> int:
        last = self._last_submit.get(side)
        if last is None:
            return 0
        return max(0, self.cooldown_ms - (now - last))

    # ------------------------------------------------------------------
    def resolve_quantity(
        self,
        price: Decimal,
        quantity: Optional[Decimal] = None,
        budget: Optional[Decimal] = None,
        free_balance: Optional[Decimal] = None,
    ) -> Decimal:
        """Return the order quantity, always a whole multiple of the step.

        A fixed ``quantity`` (exit path) is only rounded down.  Otherwise the
        spend is ``budget`` capped by ``budget_fraction`` of the free quote
        balance; a spend too small for a single step resolves to zero.
        """
        step = self.filters.step_size
        if quantity is not None:
            return round_to_step(Decimal(quantity), step)

        # an unknown balance sizes as an empty wallet
        free = free_balance if free_balance is not None else Decimal(0)
        spend = budget if budget is not None else Decimal(0)
        spend = min(spend, self.budget_fraction * free)
        if spend <= 0:
            return Decimal(0)
        return round_to_step(spend / price, step)

    def _skip(self, side: Side, reason: str, **details) -> Skipped:
        self.stats.skipped += 1
        extra = " ".join(f"{k}={v}" for k, v in details.items())
        logger.info("order skipped | side=%s reason=%s %s", side.value, reason, extra)
        return Skipped(side, reason)

    def _emit(self, event: FillEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("fill subscriber failed | side=%s", event.fill.side.value)

    # ------------------------------------------------------------------
    async def submit(
        self,
        side: Side,
        price: Optional[Decimal],
        quantity: Optional[Decimal] = None,
        budget: Optional[Decimal] = None,
        free_balance: Optional[Decimal] = None,
    ) -> OrderOutcome:
        if self._in_flight:
            return self._skip(side, SKIP_IN_FLIGHT)
        if price is None or price <= 0:
            return self._skip(side, SKIP_NO_PRICE)

        now = self._clock()
        remaining = self.cooldown_remaining(side, now)
        if remaining > 0:
            return self._skip(side, SKIP_COOLDOWN, remaining_ms=remaining)
        if quantity is None and free_balance is None:
            return self._skip(side, SKIP_NO_BALANCE)

        qty = self.resolve_quantity(price, quantity, budget, free_balance)
        if qty <= 0:
            return self._skip(side, SKIP_MIN_NOTIONAL, qty=qty, price=price)
        if qty < self.filters.min_qty:
            return self._skip(side, SKIP_MIN_QTY, qty=qty, min_qty=self.filters.min_qty)
        if qty * price < self.filters.min_notional:
            return self._skip(
                side,
                SKIP_MIN_NOTIONAL,
                notional=qty * price,
                min_notional=self.filters.min_notional,
            )

        client_order_id = self._ids.next_id(side.value)
        self._in_flight = True
        started = time.monotonic()
        try:
            ack = await self._gateway.place_order(
                symbol=self.symbol,
                side=side,
                order_type="MARKET",
                quantity=qty,
                client_order_id=client_order_id,
                price=price,
            )
        except Exception as exc:
            self.stats.failed += 1
            logger.warning(
                "order failed | side=%s qty=%s price=%s client_id=%s error=%s",
                side.value,
                qty,
                price,
                client_order_id,
                exc,
            )
            return Failed(side, str(exc) or type(exc).__name__)
        finally:
            self._in_flight = False
            self.last_latency_ms = (time.monotonic() - started) * 1000

        self._last_submit[side] = now
        self.stats.sent += 1
        self.stats.filled += 1
        fill = Filled(
            side=side,
            quantity=ack.quantity if ack.quantity else qty,
            price=ack.price if ack.price else price,
            order_ref=ack.order_ref,
            client_order_id=client_order_id,
        )
        logger.info(
            "order filled | side=%s qty=%s price=%s ref=%s client_id=%s latency_ms=%.1f",
            side.value,
            fill.quantity,
            fill.price,
            fill.order_ref,
            client_order_id,
            self.last_latency_ms,
        )
        self._emit(FillEvent(fill, now))
        return fill
