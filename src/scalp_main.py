import asyncio
import os
import signal

from dotenv import load_dotenv

from engine import ScalpEngine
from scalp_config import ScalpConfig
from scheduler import engine_jobs
from services.gateway import PaperGateway, X10Gateway
from services.trade_stream import (
    TradeStream,
    binance_trades_url,
    extended_trades_url,
    parse_binance_trade,
    parse_extended_trades,
)
from utils import logger, setup_logging

load_dotenv()


def build_stream(config: ScalpConfig, engine: ScalpEngine) -> TradeStream:
    """Extended public trades by default; ``SCALP_FEED=binance`` for Binance."""
    feed = (os.getenv("SCALP_FEED") or "extended").strip().lower()
    if feed == "binance":
        symbol = os.getenv("SCALP_FEED_SYMBOL") or config.market.replace("-", "") + "T"
        url, parser = binance_trades_url(symbol), parse_binance_trade
    else:
        from account import endpoint_config_from_env

        url, parser = extended_trades_url(endpoint_config_from_env(), config.market), parse_extended_trades
    return TradeStream(
        url,
        parser,
        on_tick=engine.post_tick,
        on_status=engine.post_status,
        reconnect_delay=config.stream_reconnect_sec,
        max_delay=config.stream_reconnect_max_sec,
    )


def build_gateway(config: ScalpConfig):
    if config.dry_run:
        return PaperGateway(config), None
    from account import TradingAccount

    account = TradingAccount()
    return X10Gateway(account, config), account


async def main():
    setup_logging()
    config = ScalpConfig.from_env()
    gateway, account = build_gateway(config)
    engine = ScalpEngine(config, gateway)
    scheduler = engine_jobs(engine, config)
    stream = build_stream(config, engine)
    closing = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, closing.set)
        except NotImplementedError:
            # Windows: no loop signal handlers
            signal.signal(sig, lambda s, f, lp=loop: lp.call_soon_threadsafe(closing.set))

    await engine.start()
    await engine.refresh_filters()
    await engine.refresh_balances()
    scheduler.start()
    stream_task = asyncio.create_task(stream.run())
    logger.info(
        "[scalp] started | market=%s mode=%s cadence=%s slots=%d",
        config.market,
        "SIM" if config.dry_run else "REAL",
        config.eval_cadence,
        config.max_slots,
    )

    try:
        await closing.wait()
    finally:
        await stream.stop()
        stream_task.cancel()
        try:
            await stream_task
        except asyncio.CancelledError:
            pass
        await scheduler.stop()
        await engine.stop()
        snap = engine.snapshot()
        logger.info(
            "[scalp] stopped | open_slots=%d realized_total=%s equity=%s",
            len(snap.slots),
            snap.stats.realized_total,
            snap.equity,
        )
        if account is not None:
            await account.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
