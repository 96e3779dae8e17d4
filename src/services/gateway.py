"""Exchange gateways used by the order guard and the balance/filter polls.

Both implementations expose the same three coroutines:

``place_order(symbol, side, order_type, quantity, client_order_id, price)``
    Send a MARKET order and return an :class:`models.OrderAck`; raise on
    rejection.
``get_balances()``
    Return ``{asset: Balance}``.
``get_symbol_filters(symbol)``
    Return the market's :class:`models.SymbolFilters`.

:class:`X10Gateway` talks to Extended through the X10 SDK clients held by
:class:`account.TradingAccount`.  Extended has no native market order type,
so a market order is sent as a crossing limit order priced
``MARKET_SLIPPAGE`` through the reference price.  :class:`PaperGateway`
fills everything at the reference price against simulated balances and is
used for dry runs.
"""
from __future__ import annotations

import itertools
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Dict, List, Optional

from x10.perpetual.orders import OrderSide

from backoff_utils import call_with_retries
from models import Balance, GatewayError, OrderAck, Side, SymbolFilters
from rate_limit import build_rate_limiter
from utils import logger, to_decimal

ACCEPTED_STATUSES = {"PLACED", "NEW", "OPEN", "ACCEPTED", "FILLED", "PARTIALLY_FILLED"}


def _check_order_type(order_type: str) -> None:
    if order_type != "MARKET":
        raise ValueError(f"unsupported order type {order_type!r}")


class X10Gateway:
    def __init__(self, account, config, limiter=None):
        self.account = account
        self.client = account.get_blocking_client()
        self._limiter = limiter or build_rate_limiter()
        self.market_name = config.market
        self.quote_asset = config.quote_asset
        self.slippage = config.market_slippage
        self.default_min_notional = config.default_min_notional
        self._market = None

    @staticmethod
    def get_tick(cfg) -> Decimal:
        min_change = getattr(cfg, "min_price_change", None)
        if min_change is not None:
            return Decimal(str(min_change))
        prec = getattr(cfg, "price_precision", 2)
        return Decimal(1).scaleb(-prec)

    async def _load_market(self, symbol: Optional[str] = None):
        name = symbol or self.market_name
        markets = await call_with_retries(self.client.get_markets, limiter=self._limiter)
        if name not in markets:
            raise GatewayError(f"Market {name} not found")
        market = markets[name]
        if name == self.market_name:
            self._market = market
        return market

    # ------------------------------------------------------------------
    async def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        market = await self._load_market(symbol)
        cfg = market.trading_config
        step = to_decimal(getattr(cfg, "min_order_size_change", None))
        min_qty = to_decimal(getattr(cfg, "min_order_size", None), Decimal(0))
        min_notional = to_decimal(
            getattr(cfg, "min_notional", None), self.default_min_notional
        )
        if step is None:
            step = min_qty if min_qty else Decimal(0)
        return SymbolFilters(
            step_size=step,
            min_qty=min_qty,
            tick_size=self.get_tick(cfg),
            min_notional=min_notional,
        )

    async def get_balances(self) -> Dict[str, Balance]:
        async_client = self.account.get_async_client()
        resp = await call_with_retries(
            lambda: async_client.account.get_balance(), limiter=self._limiter
        )
        data = getattr(resp, "data", None) or resp
        asset = getattr(data, "collateral_name", None) or self.quote_asset
        total = to_decimal(getattr(data, "balance", None), Decimal(0))
        free = to_decimal(getattr(data, "available_for_trade", None), total)
        locked = total - free if total > free else Decimal(0)
        return {asset: Balance(asset=asset, free=free, locked=locked)}

    def _crossing_price(self, side: Side, price: Decimal, tick: Decimal) -> Decimal:
        if side == Side.BUY:
            raw, rounding = price * (1 + self.slippage), ROUND_CEILING
        else:
            raw, rounding = price * (1 - self.slippage), ROUND_FLOOR
        if not tick:
            return raw
        return (raw / tick).to_integral_value(rounding=rounding) * tick

    async def place_order(
        self,
        symbol: str,
        side: Side,
        order_type: str,
        quantity: Decimal,
        client_order_id: str,
        price: Decimal,
    ) -> OrderAck:
        _check_order_type(order_type)
        market = self._market if self._market is not None and symbol == self.market_name else None
        if market is None:
            market = await self._load_market(symbol)
        limit_px = self._crossing_price(side, price, self.get_tick(market.trading_config))
        sdk_side = OrderSide.BUY if side == Side.BUY else OrderSide.SELL

        async def _place():
            return await self.client.create_and_place_order(
                market_name=market.name,
                amount_of_synthetic=quantity,
                price=limit_px,
                side=sdk_side,
                post_only=False,
                external_id=client_order_id,
            )

        try:
            result = await call_with_retries(_place, limiter=self._limiter)
        except Exception as e:
            # A retry after a lost response re-sends the same external id; the
            # exchange refusing it as a duplicate means the first one landed.
            msg = str(e).lower()
            if "hash already placed" in msg or "duplicate" in msg:
                logger.warning(
                    "duplicate order treated as placed | market=%s side=%s ext_id=%s",
                    market.name,
                    side.value,
                    client_order_id,
                )
                return OrderAck(order_ref=client_order_id, quantity=quantity)
            raise

        if getattr(result, "error", None):
            raise GatewayError(str(getattr(result, "error", "unknown")))
        order = getattr(result, "data", None) or result
        if order is None:
            raise GatewayError("create_and_place_order returned no data")

        status = getattr(order, "status", None)
        status_name = getattr(status, "value", status)
        if status_name is not None and str(status_name).upper() not in ACCEPTED_STATUSES:
            reason = (
                getattr(order, "reason", None)
                or getattr(order, "cancel_reason", None)
                or getattr(order, "cancelReason", None)
            )
            raise GatewayError(f"order {status_name}: {reason}")

        ref = getattr(order, "id", None) or getattr(order, "external_id", None) or client_order_id
        return OrderAck(order_ref=str(ref), quantity=quantity)


class PaperGateway:
    """In-memory gateway filling every MARKET order at the reference price."""

    def __init__(
        self,
        config,
        quote_balance: Decimal = Decimal("100"),
        filters: Optional[SymbolFilters] = None,
    ):
        self.market_name = config.market
        self.quote_asset = config.quote_asset
        self.base_asset = config.market.split("-")[0]
        self.filters = filters or SymbolFilters(
            step_size=config.default_step_size,
            min_qty=Decimal(0),
            tick_size=Decimal("0.01"),
            min_notional=config.default_min_notional,
        )
        self._free: Dict[str, Decimal] = {
            self.quote_asset: Decimal(quote_balance),
            self.base_asset: Decimal(0),
        }
        self.orders: List[dict] = []
        self._seq = itertools.count(1)

    async def place_order(
        self,
        symbol: str,
        side: Side,
        order_type: str,
        quantity: Decimal,
        client_order_id: str,
        price: Decimal,
    ) -> OrderAck:
        _check_order_type(order_type)
        if any(o["client_order_id"] == client_order_id for o in self.orders):
            raise GatewayError(f"duplicate client order id {client_order_id}")
        cost = quantity * price
        if side == Side.BUY:
            if cost > self._free[self.quote_asset]:
                raise GatewayError("insufficient quote balance")
            self._free[self.quote_asset] -= cost
            self._free[self.base_asset] += quantity
        else:
            if quantity > self._free[self.base_asset]:
                raise GatewayError("insufficient base balance")
            self._free[self.base_asset] -= quantity
            self._free[self.quote_asset] += cost
        ref = f"paper-{next(self._seq)}"
        self.orders.append(
            {
                "ref": ref,
                "symbol": symbol,
                "side": side,
                "quantity": quantity,
                "price": price,
                "client_order_id": client_order_id,
            }
        )
        logger.info("SIM %s %s @~ %s ref=%s", side.value, quantity, price, ref)
        return OrderAck(order_ref=ref, quantity=quantity, price=price)

    async def get_balances(self) -> Dict[str, Balance]:
        return {asset: Balance(asset=asset, free=free) for asset, free in self._free.items()}

    async def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        return self.filters
