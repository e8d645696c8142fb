"""
Demo desk - a delta-neutral seed book with limits, blocks and strategies

Used by scripts/run_desk.py and the integration tests. Nothing here is loaded
implicitly: callers pass the seed to DeskContext explicitly.
"""

from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .audit import AuditLog
from .config import DeskConfig
from .desk import DeskContext
from .execution import Position
from .market import PriceCache
from .risk import (
    LimitType,
    RiskLimit,
    RiskLimitBook,
    StrategyInstance,
    StrategyRegistry,
    StrategyState,
)

SEED_POSITIONS: List[Dict[str, Any]] = [
    # BTC basis trade
    {"id": "1", "symbol": "BTCUSDT", "venue": "SPOT", "side": "LONG", "quantity": "25",
     "avg_entry_price": "96500", "strategy_id": "ARB_DELTA_NEUTRAL", "trader_id": "ALICE"},
    {"id": "2", "symbol": "BTCUSDT", "venue": "PERP_USDT", "side": "SHORT", "quantity": "25",
     "avg_entry_price": "96800", "strategy_id": "ARB_DELTA_NEUTRAL", "trader_id": "ALICE"},
    # ETH spot vs perp + dated future
    {"id": "3", "symbol": "ETHUSDT", "venue": "SPOT", "side": "LONG", "quantity": "300",
     "avg_entry_price": "2650", "strategy_id": "ARB_DELTA_NEUTRAL", "trader_id": "ALICE"},
    {"id": "4", "symbol": "ETHUSDT", "venue": "PERP_USDT", "side": "SHORT", "quantity": "150",
     "avg_entry_price": "2680", "strategy_id": "TREND_FOLLOW", "trader_id": "BOB"},
    {"id": "5", "symbol": "ETHUSDT_250328", "venue": "FUTURE_USDT", "side": "SHORT",
     "quantity": "150", "avg_entry_price": "2750", "strategy_id": "ARB_DELTA_NEUTRAL",
     "trader_id": "ALICE"},
    # SOL
    {"id": "6", "symbol": "SOLUSDT", "venue": "SPOT", "side": "LONG", "quantity": "5000",
     "avg_entry_price": "180", "strategy_id": "TREND_FOLLOW", "trader_id": "BOB"},
    {"id": "7", "symbol": "SOLUSDT", "venue": "PERP_USDT", "side": "SHORT", "quantity": "5000",
     "avg_entry_price": "182", "strategy_id": "TREND_FOLLOW", "trader_id": "BOB"},
]

DEMO_LIMITS: List[RiskLimit] = [
    RiskLimit(LimitType.DESK, "MAIN_DESK", Decimal("10000000"), is_hard_block=True),
    RiskLimit(LimitType.STRATEGY, "ARB_DELTA_NEUTRAL", Decimal("8000000"), is_hard_block=True),
    RiskLimit(LimitType.STRATEGY, "TREND_FOLLOW", Decimal("2000000"), is_hard_block=False),
    RiskLimit(LimitType.TRADER, "ALICE", Decimal("7000000"), is_hard_block=True),
    RiskLimit(LimitType.TRADER, "BOB", Decimal("3000000"), is_hard_block=True),
    RiskLimit(LimitType.SYMBOL, "BTCUSDT", Decimal("6000000"), is_hard_block=True),
    RiskLimit(LimitType.SYMBOL, "ETHUSDT", Decimal("2500000"), is_hard_block=True),
    RiskLimit(LimitType.VENUE, "SPOT", Decimal("5000000"), is_hard_block=False),
    RiskLimit(LimitType.VENUE, "PERP_USDT", Decimal("8000000"), is_hard_block=True),
]

DEMO_BLOCKS = [("TREND_FOLLOW", "SOLUSDT")]

DEMO_STRATEGIES: List[StrategyInstance] = [
    StrategyInstance(
        strategy_id="ARB_DELTA_NEUTRAL",
        name="Basis Arb Delta Neutral",
        family="ARBITRAGE",
        owner="ALICE",
        state=StrategyState.RUNNING,
        venues=("BINANCE_SPOT", "BINANCE_PERP"),
        instruments=("BTCUSDT", "ETHUSDT"),
    ),
    StrategyInstance(
        strategy_id="TREND_FOLLOW",
        name="Trend Following V2",
        family="DIRECTIONAL",
        owner="BOB",
        state=StrategyState.PAUSED,
        venues=("BINANCE_PERP",),
        instruments=("SOLUSDT", "ETHUSDT"),
        risk_flags=("HIGH_REJECT_RATE",),
    ),
    StrategyInstance(
        strategy_id="ETH_FUTURES_HEDGE",
        name="ETH Dated Hedge",
        family="HEDGE",
        owner="ALICE",
        state=StrategyState.RUNNING,
        venues=("BINANCE_FUTURE",),
        instruments=("ETHUSDT_250328",),
        risk_flags=("STALE_DATA_FEED",),
    ),
]

DEMO_ACCOUNTS: Dict[str, Decimal] = {
    "PROP_DESK_MAIN": Decimal("1000000"),
    "ARB_STRAT_01": Decimal("1000000"),
}

# symbol -> (bid, ask, mark, funding_rate); marks on SPOT symbols are the perp mark
DEMO_PRICES: Dict[str, tuple] = {
    "BTCUSDT": (Decimal("97190"), Decimal("97210"), Decimal("97260"), Decimal("0.0001")),
    "ETHUSDT": (Decimal("2689.5"), Decimal("2690.5"), Decimal("2694"), Decimal("0.00012")),
    "SOLUSDT": (Decimal("183.95"), Decimal("184.05"), Decimal("184.2"), Decimal("-0.00005")),
    "ETHUSDT_250328": (None, None, Decimal("2741"), None),
}


def seed_positions() -> List[Position]:
    return [Position.from_dict(row) for row in SEED_POSITIONS]


def demo_limit_book(audit: Optional[AuditLog] = None) -> RiskLimitBook:
    return RiskLimitBook(DEMO_LIMITS, DEMO_BLOCKS, audit=audit)


def demo_strategies(audit: Optional[AuditLog] = None) -> StrategyRegistry:
    return StrategyRegistry(DEMO_STRATEGIES, audit=audit)


def seed_prices(prices: PriceCache) -> None:
    for symbol, (bid, ask, mark, funding) in DEMO_PRICES.items():
        prices.update(symbol, bid=bid, ask=ask, mark=mark, funding_rate=funding)


def build_demo_desk(config: Optional[DeskConfig] = None, with_prices: bool = True) -> DeskContext:
    """
    A desk loaded with the demo book.

    Account balances come from DEMO_ACCOUNTS unless the config sets its own.
    """
    config = config or DeskConfig()
    if not config.account_balances:
        config = replace(config, account_balances=dict(DEMO_ACCOUNTS))

    audit = AuditLog(capacity=config.audit_capacity)
    desk = DeskContext(
        config=config,
        limits=demo_limit_book(audit),
        strategies=demo_strategies(audit),
        seed_positions=seed_positions(),
        audit=audit,
    )
    if with_prices:
        seed_prices(desk.prices)
    return desk
