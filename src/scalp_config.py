# scalp_config.py
"""Environment driven parameters for the scalping engine.

Every threshold is a fixed constant supplied from the outside; nothing here is
fitted at runtime.  Values are read once into :class:`ScalpConfig` so the
engine and its helpers never touch ``os.environ`` directly.  Defaults mirror
the tight BTC scalping profile the bot was first tuned with.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except Exception:
        return default


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return Decimal(default)
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        return Decimal(default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SIZING_POLICIES = ("shared", "per_slot")
EVAL_CADENCES = ("tick", "bar")


@dataclass(frozen=True)
class ScalpConfig:
    # --- market ---
    market: str = "BTC-USD"
    quote_asset: str = "USD"
    dry_run: bool = False

    # --- bars / signal ---
    bar_retention: int = 120
    window_sec: int = 10
    vol_tps_factor: Decimal = Decimal("1.00")
    rebound_pct: Decimal = Decimal("0.0008")
    breakout_pct: Decimal = Decimal("0.0002")
    momentum_pct: Decimal = Decimal("0.0004")
    max_bar_stale_ms: int = 3000
    max_tick_latency_ms: int = 1500
    eval_cadence: str = "tick"

    # --- exits ---
    tp_pct: Decimal = Decimal("0.0006")
    sl_pct: Decimal = Decimal("0.0006")
    be_enabled: bool = True
    be_pct: Decimal = Decimal("0.0015")
    be_lock_pct: Decimal = Decimal("0.0002")
    trail_enabled: bool = True
    trail_arm_pct: Decimal = Decimal("0.0010")
    trail_pct: Decimal = Decimal("0.0005")
    timeout_ms: int = 120_000

    # --- slots / sizing ---
    max_slots: int = 1
    sizing_policy: str = "shared"
    budget_usd: Decimal = Decimal("12")
    budget_fraction: Decimal = Decimal("0.98")

    # --- order guard ---
    cooldown_ms: int = 2000
    default_step_size: Decimal = Decimal("0.00001")
    default_min_notional: Decimal = Decimal("5")
    market_slippage: Decimal = Decimal("0.001")
    order_prefix: str = "scalp"

    # --- schedules ---
    balance_refresh_sec: float = 15.0
    filters_refresh_sec: float = 300.0
    stats_window_sec: float = 60.0
    stream_reconnect_sec: float = 2.0
    stream_reconnect_max_sec: float = 30.0

    def __post_init__(self) -> None:
        if self.max_slots < 1:
            raise ValueError("max_slots must be >= 1")
        if self.window_sec < 1:
            raise ValueError("window_sec must be >= 1")
        if self.bar_retention < 4:
            raise ValueError("bar_retention must keep at least 4 bars")
        if self.sizing_policy not in SIZING_POLICIES:
            raise ValueError(f"unknown sizing policy {self.sizing_policy!r}")
        if self.eval_cadence not in EVAL_CADENCES:
            raise ValueError(f"unknown evaluation cadence {self.eval_cadence!r}")

    @classmethod
    def from_env(cls) -> "ScalpConfig":
        """Build a config from ``SCALP_*`` environment variables."""
        market = os.getenv("SCALP_MARKET") or cls.market
        default_quote = market.split("-")[-1] if "-" in market else cls.quote_asset
        return cls(
            market=market,
            quote_asset=os.getenv("SCALP_QUOTE_ASSET") or default_quote,
            dry_run=_env_bool("SCALP_DRY_RUN", False),
            bar_retention=_env_int("SCALP_BAR_RETENTION", 120),
            window_sec=_env_int("SCALP_WINDOW_SEC", 10),
            vol_tps_factor=_env_decimal("SCALP_VOL_TPS_FACTOR", "1.00"),
            rebound_pct=_env_decimal("SCALP_REBOUND_PCT", "0.0008"),
            breakout_pct=_env_decimal("SCALP_BREAKOUT_PCT", "0.0002"),
            momentum_pct=_env_decimal("SCALP_MOMENTUM_PCT", "0.0004"),
            max_bar_stale_ms=_env_int("SCALP_MAX_BAR_STALE_MS", 3000),
            max_tick_latency_ms=_env_int("SCALP_MAX_TICK_LATENCY_MS", 1500),
            eval_cadence=(os.getenv("SCALP_EVAL_CADENCE") or "tick").lower(),
            tp_pct=_env_decimal("SCALP_TP_PCT", "0.0006"),
            sl_pct=_env_decimal("SCALP_SL_PCT", "0.0006"),
            be_enabled=_env_bool("SCALP_BE_ENABLED", True),
            be_pct=_env_decimal("SCALP_BE_PCT", "0.0015"),
            be_lock_pct=_env_decimal("SCALP_BE_LOCK_PCT", "0.0002"),
            trail_enabled=_env_bool("SCALP_TRAIL_ENABLED", True),
            trail_arm_pct=_env_decimal("SCALP_TRAIL_ARM_PCT", "0.0010"),
            trail_pct=_env_decimal("SCALP_TRAIL_PCT", "0.0005"),
            timeout_ms=_env_int("SCALP_TIMEOUT_MS", 120_000),
            max_slots=_env_int("SCALP_MAX_SLOTS", 1),
            sizing_policy=(os.getenv("SCALP_SIZING_POLICY") or "shared").lower(),
            budget_usd=_env_decimal("SCALP_BUDGET_USD", "12"),
            budget_fraction=_env_decimal("SCALP_BUDGET_FRACTION", "0.98"),
            cooldown_ms=_env_int("SCALP_COOLDOWN_MS", 2000),
            default_step_size=_env_decimal("SCALP_DEFAULT_STEP_SIZE", "0.00001"),
            default_min_notional=_env_decimal("SCALP_DEFAULT_MIN_NOTIONAL", "5"),
            market_slippage=_env_decimal("SCALP_MARKET_SLIPPAGE", "0.001"),
            order_prefix=os.getenv("SCALP_ORDER_PREFIX") or "scalp",
            balance_refresh_sec=_env_float("SCALP_BALANCE_REFRESH_SEC", 15.0),
            filters_refresh_sec=_env_float("SCALP_FILTERS_REFRESH_SEC", 300.0),
            stats_window_sec=_env_float("SCALP_STATS_WINDOW_SEC", 60.0),
            stream_reconnect_sec=_env_float("SCALP_STREAM_RECONNECT_SEC", 2.0),
            stream_reconnect_max_sec=_env_float("SCALP_STREAM_RECONNECT_MAX_SEC", 30.0),
        )
