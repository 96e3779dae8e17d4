"""Public trades websocket feeding ticks to the engine.

The stream reconnects forever with exponential backoff (starting at
``reconnect_delay`` and capped at ``max_delay``) and reports every
connection state change.  It owns no trading state: a reconnect only
interrupts the tick flow, the engine keeps its bars and slots.

Latency of each tick is measured as local receive time minus the exchange
event time carried by the message.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, List, Optional, Tuple

import aiohttp

from models import StreamStatus, Tick
from utils import logger, now_ms, to_decimal

BINANCE_WS_BASE = "wss://stream.binance.com:9443/ws"

ParsedTrade = Tuple[Tick, Optional[int]]


def extended_trades_url(endpoint_config, market: str) -> str:
    return f"{endpoint_config.stream_url.rstrip('/')}/publicTrades/{market}"


def binance_trades_url(symbol: str) -> str:
    return f"{BINANCE_WS_BASE}/{symbol.lower()}@trade"


def parse_extended_trades(payload: Any) -> List[ParsedTrade]:
    """Parse an Extended ``publicTrades`` message.

    ``{"ts": 1701563440000, "data": [{"T": ..., "p": "...", "q": "..."}]}``
    """
    event_ts = payload.get("ts")
    data = payload.get("data") or []
    if isinstance(data, dict):
        data = [data]
    out: List[ParsedTrade] = []
    for row in data:
        price = to_decimal(row.get("p"))
        qty = to_decimal(row.get("q"), 0)
        ts = row.get("T") or event_ts
        if price is None or ts is None:
            continue
        out.append((Tick(int(ts), price, qty), int(event_ts) if event_ts is not None else None))
    return out


def parse_binance_trade(payload: Any) -> List[ParsedTrade]:
    """Parse a Binance ``<symbol>@trade`` message (``E`` event, ``T`` trade time)."""
    price = to_decimal(payload.get("p"))
    ts = payload.get("T")
    if price is None or ts is None:
        return []
    event_ts = payload.get("E")
    tick = Tick(int(ts), price, to_decimal(payload.get("q"), 0))
    return [(tick, int(event_ts) if event_ts is not None else None)]


class TradeStream:
    def __init__(
        self,
        url: str,
        parser: Callable[[Any], List[ParsedTrade]],
        on_tick: Callable[[Tick, Optional[int]], None],
        on_status: Optional[Callable[[StreamStatus], None]] = None,
        reconnect_delay: float = 2.0,
        max_delay: float = 30.0,
        session_factory: Callable[[], Any] = aiohttp.ClientSession,
        clock: Callable[[], int] = now_ms,
    ):
        self.url = url
        self._parser = parser
        self._on_tick = on_tick
        self._on_status = on_status
        self.reconnect_delay = reconnect_delay
        self.max_delay = max_delay
        self._session_factory = session_factory
        self._clock = clock
        self._closing = asyncio.Event()

        self.status = StreamStatus.DISCONNECTED
        self.last_latency_ms: Optional[int] = None
        self.received = 0
        self.reconnects = 0

    def _set_status(self, status: StreamStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("stream status | url=%s status=%s", self.url, status.value)
        if self._on_status:
            self._on_status(status)

    def handle_message(self, raw: str) -> None:
        try:
            trades = self._parser(json.loads(raw))
        except Exception as e:
            logger.warning("stream parse error | error=%s", e)
            return
        now = self._clock()
        for tick, event_ts in trades:
            latency = now - event_ts if event_ts is not None else None
            self.last_latency_ms = latency
            self.received += 1
            self._on_tick(tick, latency)

    async def _consume_once(self) -> None:
        async with self._session_factory() as session:
            async with session.ws_connect(self.url, heartbeat=20) as ws:
                self._set_status(StreamStatus.CONNECTED)
                async for msg in ws:
                    if self._closing.is_set():
                        break
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        self.handle_message(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        self._set_status(StreamStatus.ERROR)
                        break

    async def run(self) -> None:
        delay = self.reconnect_delay
        while not self._closing.is_set():
            self._set_status(StreamStatus.CONNECTING)
            received_before = self.received
            try:
                await self._consume_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._set_status(StreamStatus.ERROR)
                logger.warning("stream connect error | url=%s error=%s", self.url, e)
            self._set_status(StreamStatus.DISCONNECTED)
            if self._closing.is_set():
                break
            # a connection that delivered data resets the backoff
            if self.received > received_before:
                delay = self.reconnect_delay
            self.reconnects += 1
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, self.max_delay)

    async def stop(self) -> None:
        self._closing.set()
