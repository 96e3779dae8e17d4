# engine.py
"""Single-writer scalping engine for one market.

Everything that mutates trading state runs on one worker task that drains an
inbox queue in arrival order.  The market data stream, the periodic jobs and
the post-fill balance refresh only *post* messages; they never touch bars,
slots or cooldowns themselves.  A tick's evaluation pass (aggregate ->
signal -> lifecycle -> guard) therefore completes, including any awaited
order call, before the next message is looked at: ticks that arrive while an
order is pending simply wait in the queue.
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple

from bars import BarAggregator
from lifecycle import PositionLifecycle
from models import (
    Balance,
    FillEvent,
    SecondBar,
    SessionStats,
    SlotView,
    StreamStatus,
    SymbolFilters,
    Tick,
)
from order_guard import OrderGuard
from strategy.signals import SignalEvaluator, SignalResult
from utils import logger, now_ms


# --- inbox messages -------------------------------------------------------------


@dataclass(frozen=True)
class TickMessage:
    tick: Tick
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class StatusMessage:
    status: StreamStatus


@dataclass(frozen=True)
class BalancesMessage:
    balances: Dict[str, Balance]


@dataclass(frozen=True)
class FiltersMessage:
    filters: SymbolFilters


@dataclass(frozen=True)
class RolloverMessage:
    pass


@dataclass(frozen=True)
class StopMessage:
    pass


# --- state -----------------------------------------------------------------------


@dataclass
class EngineState:
    bars: BarAggregator
    stats: SessionStats
    balances: Dict[str, Balance] = field(default_factory=dict)
    filters: Optional[SymbolFilters] = None
    stream_status: StreamStatus = StreamStatus.DISCONNECTED
    tick_latency_ms: Optional[int] = None
    last_tick: Optional[Tick] = None
    last_signal: Optional[SignalResult] = None
    last_window: Optional[SessionStats] = None


@dataclass(frozen=True)
class EngineSnapshot:
    bars: Tuple[SecondBar, ...]
    signal: Optional[SignalResult]
    slots: Tuple[SlotView, ...]
    stats: SessionStats
    balances: Dict[str, Balance]
    equity: Optional[Decimal]
    last_price: Optional[Decimal]
    stream_status: StreamStatus
    tick_latency_ms: Optional[int]
    gateway_latency_ms: Optional[float]


class ScalpEngine:
    def __init__(self, config, gateway, clock=now_ms):
        self.config = config
        self.gateway = gateway
        self._clock = clock
        self.base_asset = config.market.split("-")[0]

        self.state = EngineState(
            bars=BarAggregator(config.bar_retention),
            stats=SessionStats(window_started_at=clock()),
        )
        self.guard = OrderGuard(gateway, config, self.state.stats, clock=clock)
        self.evaluator = SignalEvaluator(config)
        self.lifecycle = PositionLifecycle(config, self.guard, self.state.stats)
        self.guard.subscribe(self._on_fill)

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # posting side: safe to call from any task on the loop
    def post(self, message) -> None:
        self._inbox.put_nowait(message)

    def post_tick(self, tick: Tick, latency_ms: Optional[int] = None) -> None:
        self.post(TickMessage(tick, latency_ms))

    def post_status(self, status: StreamStatus) -> None:
        self.post(StatusMessage(status))

    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._worker and not self._worker.done():
            self.post(StopMessage())
            await self._worker
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every message posted so far has been handled."""
        await self._inbox.join()

    async def _run(self) -> None:
        while True:
            msg = await self._inbox.get()
            try:
                if isinstance(msg, StopMessage):
                    return
                await self.handle(msg)
            except Exception:
                logger.exception("engine message failed | message=%s", type(msg).__name__)
            finally:
                self._inbox.task_done()

    # ------------------------------------------------------------------
    async def handle(self, msg) -> None:
        if isinstance(msg, TickMessage):
            await self._handle_tick(msg)
        elif isinstance(msg, StatusMessage):
            self.state.stream_status = msg.status
        elif isinstance(msg, BalancesMessage):
            self.state.balances.update(msg.balances)
        elif isinstance(msg, FiltersMessage):
            self.state.filters = msg.filters
            self.guard.set_filters(msg.filters)
            logger.info(
                "filters updated | step=%s min_qty=%s tick=%s min_notional=%s",
                msg.filters.step_size,
                msg.filters.min_qty,
                msg.filters.tick_size,
                msg.filters.min_notional,
            )
        elif isinstance(msg, RolloverMessage):
            self._rollover()
        else:
            raise TypeError(f"unknown engine message {msg!r}")

    async def _handle_tick(self, msg: TickMessage) -> None:
        opened = self.state.bars.ingest(msg.tick)
        self.state.last_tick = msg.tick
        self.state.tick_latency_ms = msg.latency_ms
        if self.config.eval_cadence == "bar" and not opened:
            return
        await self.evaluate(closed_only=self.config.eval_cadence == "bar")

    async def evaluate(self, closed_only: bool = False) -> None:
        """One pass: signal on the bar window, then exits and entries."""
        now = self._clock()
        window = self.state.bars.window(self.evaluator.lookback, closed_only=closed_only)
        signal = self.evaluator.evaluate(window, self.state.tick_latency_ms, now)
        self.state.last_signal = signal
        if signal.blocked:
            logger.debug("gate blocked | reasons=%s", ",".join(signal.reasons))
        if not len(window):
            return
        close = window[-1].close
        await self.lifecycle.on_bar(close, signal, now, free_balance=self.free_quote())

    # ------------------------------------------------------------------
    def free_quote(self) -> Optional[Decimal]:
        bal = self.state.balances.get(self.config.quote_asset)
        return bal.free if bal is not None else None

    def _on_fill(self, event: FillEvent) -> None:
        # fire-and-forget: the result comes back through the inbox
        task = asyncio.create_task(self.refresh_balances())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def refresh_balances(self) -> None:
        try:
            balances = await self.gateway.get_balances()
        except Exception as e:
            logger.warning("balance refresh failed; keeping last known | error=%s", e)
            return
        self.post(BalancesMessage(balances))

    async def refresh_filters(self) -> None:
        try:
            filters = await self.gateway.get_symbol_filters(self.config.market)
        except Exception as e:
            logger.warning("filters refresh failed; keeping last known | error=%s", e)
            return
        self.post(FiltersMessage(filters))

    def _rollover(self) -> None:
        closed = self.state.stats.rollover(self._clock())
        self.state.last_window = closed
        logger.info(
            "stats window | signals=%d sent=%d filled=%d skipped=%d failed=%d realized=%s realized_total=%s open_slots=%d",
            closed.signals,
            closed.sent,
            closed.filled,
            closed.skipped,
            closed.failed,
            closed.realized,
            closed.realized_total,
            self.lifecycle.open_count,
        )

    # ------------------------------------------------------------------
    def snapshot(self) -> EngineSnapshot:
        last = self.state.bars.last
        price = last.close if last is not None else None
        balances = dict(self.state.balances)
        equity = None
        quote = balances.get(self.config.quote_asset)
        if quote is not None:
            equity = quote.free + quote.locked
            base = balances.get(self.base_asset)
            if base is not None and price is not None:
                equity += (base.free + base.locked) * price
        bars = tuple(
            dataclasses.replace(b)
            for b in self.state.bars.window(self.state.bars.retention)
        )
        return EngineSnapshot(
            bars=bars,
            signal=self.state.last_signal,
            slots=tuple(self.lifecycle.views(price)),
            stats=dataclasses.replace(self.state.stats),
            balances=balances,
            equity=equity,
            last_price=price,
            stream_status=self.state.stream_status,
            tick_latency_ms=self.state.tick_latency_ms,
            gateway_latency_ms=self.guard.last_latency_ms,
        )
