"""
Portfolio Module - mark-to-market valuation of the position book

Usage:
    from deskrisk.portfolio import PortfolioValuator, AccountRegistry

    valuator = PortfolioValuator(ledger, prices, AccountRegistry({"PROP_DESK_MAIN": 1_000_000}))
    snapshot = valuator.tick()

    print(snapshot.metrics.total_equity, snapshot.metrics.leverage)
    for group in snapshot.groups:
        print(group.base_asset, group.net_delta_usd)
"""

from .schema import (
    CarryMetric,
    LivePosition,
    PortfolioGroup,
    PortfolioSnapshot,
    RiskMetrics,
    pnl_percent,
    unrealized_pnl,
)
from .accounts import AccountRegistry
from .valuator import PortfolioValuator, compute_leverage, resolve_mark
from .report import POSITION_COLUMNS, exposure_by, positions_to_frame, tree_to_frame

__all__ = [
    "AccountRegistry",
    "CarryMetric",
    "LivePosition",
    "PortfolioGroup",
    "PortfolioSnapshot",
    "POSITION_COLUMNS",
    "PortfolioValuator",
    "RiskMetrics",
    "compute_leverage",
    "exposure_by",
    "pnl_percent",
    "positions_to_frame",
    "resolve_mark",
    "tree_to_frame",
    "unrealized_pnl",
]
