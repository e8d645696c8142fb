"""
Shock Module - scenario stress of the live book

Usage:
    from deskrisk.shock import ShockEngine, BTC_CRASH

    engine = ShockEngine(limit_book)
    tree = engine.run(BTC_CRASH, valuator.get_positions())
    print(tree.shock_delta_pnl)
"""

from .schema import (
    ShockedPosition,
    ShockParameter,
    ShockResultNode,
    ShockScenario,
    ShockScope,
    ShockType,
)
from .engine import DEFAULT_MARGIN_CALL_MULTIPLE, ShockEngine, shock_mark, shock_position
from .scenarios import (
    ALT_BLOODBATH,
    BTC_CRASH,
    DEFAULT_SCENARIOS,
    FUNDING_SPIKE,
    default_scenarios,
    load_scenarios,
)

__all__ = [
    "ShockedPosition",
    "ShockParameter",
    "ShockResultNode",
    "ShockScenario",
    "ShockScope",
    "ShockType",
    "DEFAULT_MARGIN_CALL_MULTIPLE",
    "ShockEngine",
    "shock_mark",
    "shock_position",
    "ALT_BLOODBATH",
    "BTC_CRASH",
    "DEFAULT_SCENARIOS",
    "FUNDING_SPIKE",
    "default_scenarios",
    "load_scenarios",
]
