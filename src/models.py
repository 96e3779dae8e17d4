# models.py
"""Plain data carried between the stream, the engine and the gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class StreamStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Tick:
    """One executed trade; ``timestamp`` is the trade time in epoch ms."""

    timestamp: int
    price: Decimal
    quantity: Decimal


@dataclass
class SecondBar:
    """OHLCV aggregate of every trade printed within one epoch second.

    ``volume`` sums traded quantity, ``trades`` counts prints.  The bar is
    only mutated by the aggregator while its second is current.
    """

    second: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    trades: int = 1

    @classmethod
    def seed(cls, second: int, tick: Tick) -> "SecondBar":
        return cls(
            second=second,
            open=tick.price,
            high=tick.price,
            low=tick.price,
            close=tick.price,
            volume=tick.quantity,
        )

    def add(self, tick: Tick) -> None:
        if tick.price > self.high:
            self.high = tick.price
        if tick.price < self.low:
            self.low = tick.price
        self.close = tick.price
        self.volume += tick.quantity
        self.trades += 1


@dataclass(frozen=True)
class SymbolFilters:
    step_size: Decimal
    min_qty: Decimal
    tick_size: Decimal
    min_notional: Decimal


@dataclass(frozen=True)
class Balance:
    asset: str
    free: Decimal
    locked: Decimal = Decimal(0)


@dataclass
class PositionSlot:
    """An open long position occupying one slot index."""

    index: int
    entry_price: Decimal
    quantity: Decimal
    opened_at: int
    max_price_since_entry: Decimal
    order_ref: Optional[str] = None

    def observe(self, price: Decimal) -> None:
        if price > self.max_price_since_entry:
            self.max_price_since_entry = price

    def pnl_pct(self, price: Decimal) -> Decimal:
        return (price - self.entry_price) / self.entry_price


@dataclass
class SessionStats:
    """Windowed counters plus the session-long realized P&L."""

    signals: int = 0
    sent: int = 0
    filled: int = 0
    skipped: int = 0
    failed: int = 0
    realized: Decimal = Decimal(0)
    realized_total: Decimal = Decimal(0)
    window_started_at: int = 0

    def accrue(self, pnl: Decimal) -> None:
        self.realized += pnl
        self.realized_total += pnl

    def rollover(self, now: int) -> "SessionStats":
        """Close the current window and return a copy of it."""
        closed = SessionStats(
            signals=self.signals,
            sent=self.sent,
            filled=self.filled,
            skipped=self.skipped,
            failed=self.failed,
            realized=self.realized,
            realized_total=self.realized_total,
            window_started_at=self.window_started_at,
        )
        self.signals = self.sent = self.filled = self.skipped = self.failed = 0
        self.realized = Decimal(0)
        self.window_started_at = now
        return closed


# --- order outcomes ------------------------------------------------------------


@dataclass(frozen=True)
class OrderAck:
    """What a gateway reports back for an accepted order."""

    order_ref: str
    quantity: Decimal
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class Filled:
    side: Side
    quantity: Decimal
    price: Decimal
    order_ref: str
    client_order_id: str


@dataclass(frozen=True)
class Skipped:
    side: Side
    reason: str


@dataclass(frozen=True)
class Failed:
    side: Side
    cause: str


OrderOutcome = Union[Filled, Skipped, Failed]


@dataclass(frozen=True)
class FillEvent:
    """Emitted by the order guard after every reported fill."""

    fill: Filled
    at: int


@dataclass(frozen=True)
class ExitDecision:
    reason: Optional[str]
    pnl_pct: Decimal
    dynamic_stop: Optional[Decimal] = None
    breakeven_armed: bool = False
    trailing_armed: bool = False

    @property
    def should_exit(self) -> bool:
        return self.reason is not None


@dataclass(frozen=True)
class SlotView:
    """Read-only projection of a slot for snapshots."""

    index: int
    entry_price: Decimal
    quantity: Decimal
    opened_at: int
    max_price_since_entry: Decimal
    pnl_pct: Decimal
    unrealized: Decimal
    dynamic_stop: Optional[Decimal] = None


class GatewayError(RuntimeError):
    """Raised by gateway adapters when an order is rejected or unanswered."""


@dataclass
class LifecycleReport:
    """What one evaluation pass did; used for logging and tests."""

    exits: list = field(default_factory=list)
    entry: Optional[OrderOutcome] = None
