import asyncio
import dataclasses
import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure src/ is importable
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from models import (  # noqa: E402
    Failed,
    Filled,
    OrderAck,
    SessionStats,
    Side,
    Skipped,
    SymbolFilters,
)
from order_guard import (  # noqa: E402
    SKIP_COOLDOWN,
    SKIP_IN_FLIGHT,
    SKIP_MIN_NOTIONAL,
    SKIP_MIN_QTY,
    SKIP_NO_BALANCE,
    SKIP_NO_PRICE,
    OrderGuard,
)
from scalp_config import ScalpConfig  # noqa: E402


class FakeGateway:
    def __init__(self, fail=None, gate=None):
        self.calls = []
        self.fail = fail
        self.gate = gate

    async def place_order(self, symbol, side, order_type, quantity, client_order_id, price):
        self.calls.append(
            dict(
                symbol=symbol,
                side=side,
                order_type=order_type,
                quantity=quantity,
                client_order_id=client_order_id,
                price=price,
            )
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            raise self.fail
        return OrderAck(order_ref=f"ref-{len(self.calls)}", quantity=quantity)


class Clock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


def make_guard(gateway=None, clock=None, filters=None, **overrides):
    config = dataclasses.replace(ScalpConfig(market="BTC-USD"), **overrides)
    stats = SessionStats()
    guard = OrderGuard(gateway or FakeGateway(), config, stats, clock=clock or Clock())
    if filters is not None:
        guard.set_filters(filters)
    return guard, stats


def filters(step="0.00001", min_qty="0", min_notional="5"):
    return SymbolFilters(
        step_size=Decimal(step),
        min_qty=Decimal(min_qty),
        tick_size=Decimal("0.1"),
        min_notional=Decimal(min_notional),
    )


PRICE = Decimal("50000")


@pytest.mark.asyncio
async def test_second_buy_within_cooldown_is_skipped():
    clock = Clock(0)
    gateway = FakeGateway()
    guard, stats = make_guard(gateway, clock, cooldown_ms=8000)

    first = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))
    clock.now = 1000
    second = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))

    assert isinstance(first, Filled)
    assert second == Skipped(Side.BUY, SKIP_COOLDOWN)
    assert len(gateway.calls) == 1
    assert stats.sent == 1 and stats.filled == 1 and stats.skipped == 1


@pytest.mark.asyncio
async def test_cooldown_is_per_side():
    clock = Clock(0)
    guard, _ = make_guard(clock=clock, cooldown_ms=8000)
    await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))
    clock.now = 10
    sell = await guard.submit(Side.SELL, PRICE, quantity=Decimal("0.00024"))
    assert isinstance(sell, Filled)
    assert guard.cooldown_remaining(Side.BUY, 10) == 7990


@pytest.mark.asyncio
async def test_budget_too_small_for_one_step_skips_min_notional():
    gateway = FakeGateway()
    guard, stats = make_guard(gateway, filters=filters(step="0.001"))

    outcome = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("10"))

    assert outcome == Skipped(Side.BUY, SKIP_MIN_NOTIONAL)
    assert gateway.calls == []
    assert stats.skipped == 1


@pytest.mark.asyncio
async def test_notional_below_minimum_is_skipped():
    guard, _ = make_guard(filters=filters(min_notional="20"))
    outcome = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))
    assert outcome == Skipped(Side.BUY, SKIP_MIN_NOTIONAL)


@pytest.mark.asyncio
async def test_quantity_below_min_qty_is_skipped():
    guard, _ = make_guard(filters=filters(min_qty="0.01"))
    outcome = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))
    assert outcome == Skipped(Side.BUY, SKIP_MIN_QTY)


@pytest.mark.asyncio
async def test_missing_price_is_skipped():
    guard, _ = make_guard()
    assert await guard.submit(Side.BUY, None, budget=Decimal("12")) == Skipped(Side.BUY, SKIP_NO_PRICE)
    assert await guard.submit(Side.SELL, Decimal("0"), quantity=Decimal("1")) == Skipped(
        Side.SELL, SKIP_NO_PRICE
    )


@pytest.mark.asyncio
async def test_quantities_are_step_multiples():
    gateway = FakeGateway()
    guard, _ = make_guard(gateway, filters=filters(step="0.001", min_notional="1"))

    await guard.submit(Side.SELL, Decimal("100"), quantity=Decimal("0.123456"))
    assert gateway.calls[0]["quantity"] == Decimal("0.123")

    qty = guard.resolve_quantity(Decimal("30000"), budget=Decimal("12"), free_balance=Decimal("100"))
    assert qty == Decimal("0.000")
    qty = guard.resolve_quantity(Decimal("3000"), budget=Decimal("12"), free_balance=Decimal("100"))
    assert qty == Decimal("0.004")
    assert qty % Decimal("0.001") == 0


@pytest.mark.asyncio
async def test_budget_entry_without_known_balance_is_skipped():
    gateway = FakeGateway()
    guard, stats = make_guard(gateway, budget_usd=Decimal("1000"))

    outcome = await guard.submit(Side.BUY, PRICE, budget=Decimal("1000"))

    assert outcome == Skipped(Side.BUY, SKIP_NO_BALANCE)
    assert gateway.calls == []
    assert stats.skipped == 1
    assert guard.resolve_quantity(PRICE, budget=Decimal("1000")) == 0

    # exits sell a fixed quantity and need no balance
    sell = await guard.submit(Side.SELL, PRICE, quantity=Decimal("0.0002"))
    assert isinstance(sell, Filled)


def test_budget_capped_by_free_balance_fraction():
    guard, _ = make_guard(filters=filters(step="0.01"), budget_fraction=Decimal("0.98"))
    qty = guard.resolve_quantity(Decimal("1"), budget=Decimal("12"), free_balance=Decimal("10"))
    assert qty == Decimal("9.80")
    assert guard.resolve_quantity(Decimal("1"), budget=Decimal("12"), free_balance=Decimal("0")) == 0


@pytest.mark.asyncio
async def test_gateway_failure_does_not_start_cooldown():
    clock = Clock(0)
    gateway = FakeGateway(fail=RuntimeError("rejected"))
    guard, stats = make_guard(gateway, clock)

    outcome = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))

    assert outcome == Failed(Side.BUY, "rejected")
    assert stats.failed == 1
    assert stats.sent == 0
    assert guard.last_submit(Side.BUY) is None
    assert not guard.in_flight

    gateway.fail = None
    retry = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))
    assert isinstance(retry, Filled)


@pytest.mark.asyncio
async def test_only_one_order_in_flight():
    gate = asyncio.Event()
    gateway = FakeGateway(gate=gate)
    guard, _ = make_guard(gateway)

    pending = asyncio.create_task(guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100")))
    await asyncio.sleep(0)
    assert guard.in_flight

    skipped = await guard.submit(Side.SELL, PRICE, quantity=Decimal("0.001"))
    assert skipped == Skipped(Side.SELL, SKIP_IN_FLIGHT)

    gate.set()
    assert isinstance(await pending, Filled)
    assert not guard.in_flight


@pytest.mark.asyncio
async def test_fill_is_published_to_subscribers():
    gateway = FakeGateway()
    guard, _ = make_guard(gateway, clock=Clock(42))
    events = []

    def broken(_event):
        raise RuntimeError("subscriber bug")

    guard.subscribe(broken)
    guard.subscribe(events.append)

    fill = await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))

    assert len(events) == 1
    assert events[0].fill == fill
    assert events[0].at == 42
    assert fill.price == PRICE
    assert fill.quantity == Decimal("0.00024")
    assert gateway.calls[0]["order_type"] == "MARKET"
    assert gateway.calls[0]["symbol"] == "BTC-USD"
    assert guard.last_latency_ms is not None


@pytest.mark.asyncio
async def test_client_order_ids_are_unique():
    clock = Clock(0)
    gateway = FakeGateway()
    guard, _ = make_guard(gateway, clock, cooldown_ms=0)

    for i in range(5):
        clock.now = i
        await guard.submit(Side.BUY, PRICE, budget=Decimal("12"), free_balance=Decimal("100"))

    ids = [c["client_order_id"] for c in gateway.calls]
    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert all(i.startswith("scalp_buy_") for i in ids)
