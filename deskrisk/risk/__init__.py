"""
Risk Module - limits, the exposure hierarchy and the pre-trade gate

Every pre-trade decision is explainable: a refusal names the check that
failed and the numbers behind it.

Usage:
    from deskrisk.risk import RiskLimitBook, RiskHierarchyBuilder, PreTradeRiskGate

    book = RiskLimitBook.load_from_yaml("config.yaml")
    builder = RiskHierarchyBuilder(book)
    gate = PreTradeRiskGate(book)

    tree = builder.rebuild(valuator.snapshot)
    result = gate.check("ARB_DELTA_NEUTRAL", "ALICE", "BTCUSDT", "SPOT",
                        Decimal("600000"), valuator.get_positions())

    if result.hard_block:
        print(f"Refused: {result.first_failure.name.value} - {result.reason}")
"""

from .schema import (
    LimitOverride,
    LimitType,
    PreTradeResult,
    RiskCheckName,
    RiskCheckResult,
    RiskLimit,
    RiskNode,
    RiskNodeType,
)
from .limits import LimitBookSnapshot, RiskConfigError, RiskLimitBook, UNBOUNDED_LIMIT_USD
from .hierarchy import HOUSE_TRADER, UNASSIGNED_STRATEGY, RiskHierarchyBuilder
from .gate import PreTradeRiskGate
from .strategies import StrategyInstance, StrategyRegistry, StrategyState, StrategyStateChange

__all__ = [
    # Schema
    "LimitOverride",
    "LimitType",
    "PreTradeResult",
    "RiskCheckName",
    "RiskCheckResult",
    "RiskLimit",
    "RiskNode",
    "RiskNodeType",
    # Limits
    "LimitBookSnapshot",
    "RiskConfigError",
    "RiskLimitBook",
    "UNBOUNDED_LIMIT_USD",
    # Hierarchy
    "HOUSE_TRADER",
    "UNASSIGNED_STRATEGY",
    "RiskHierarchyBuilder",
    # Gate
    "PreTradeRiskGate",
    # Strategies
    "StrategyInstance",
    "StrategyRegistry",
    "StrategyState",
    "StrategyStateChange",
]
