"""
deskrisk - desk exposure and risk core

Order/fill ledger, mark-to-market valuation, a limit-governed exposure
hierarchy, pre-trade risk checks and scenario shocks for a trading desk.

Usage:
    from deskrisk import DeskConfig, DeskContext
    from deskrisk.demo import build_demo_desk

    desk = build_demo_desk(DeskConfig(fill_delay_seconds=0, slippage_seed=7))
    desk.tick()
    print(desk.get_metrics().to_dict())
    print(desk.run_shock("btc_crash").shock_delta_pnl)
"""

from .config import DeskConfig
from .desk import DeskContext, OrderSubmission

__version__ = "0.1.0"

__all__ = [
    "DeskConfig",
    "DeskContext",
    "OrderSubmission",
    "__version__",
]
