"""
Pre-Trade Risk Gate - synchronous go/no-go for a candidate order

Check order (the first hard failure refuses, later checks are not run):
1. Block list    (strategy, instrument) denied          -> hard block
2. Strategy      strategy gross + candidate > limit     -> hard block or warning
3. Symbol        {base}USDT gross + candidate > limit   -> hard block or warning
4. Trader        trader gross + candidate > limit       -> hard block or warning
5. Venue         venue gross + candidate > limit        -> hard block or warning
6. Desk          desk gross + candidate > limit         -> hard block or warning
7. Pass

Soft limits (is_hard_block=False) let the order through with a warning, but
the remaining checks still run and any later hard limit refuses it. The
warning names the first soft limit crossed.
A candidate notional <= 0 adds no exposure: limit checks pass, blocks still
apply.

The gate reads the same RiskLimitBook as the hierarchy builder and judges
exposure from the live positions the caller passes in.
"""

import logging
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from ..execution.schema import base_asset_of, spot_symbol_for
from ..portfolio.schema import ZERO, LivePosition
from .hierarchy import HOUSE_TRADER, UNASSIGNED_STRATEGY, strategy_of, trader_of
from .limits import LimitBookSnapshot, RiskLimitBook
from .schema import (
    LimitType,
    PreTradeResult,
    RiskCheckName,
    RiskCheckResult,
)

logger = logging.getLogger(__name__)


def _usd(value: Decimal) -> str:
    return f"${value:,.0f}"


class PreTradeRiskGate:
    """
    Pre-trade limit and block-list check.

    Usage:
        gate = PreTradeRiskGate(limit_book)
        result = gate.check(
            strategy_id="TREND_FOLLOW",
            trader_id="BOB",
            symbol="ETHUSDT",
            venue="PERP_USDT",
            candidate_notional_usd=Decimal("250000"),
            live_positions=valuator.get_positions(),
        )
        if result.hard_block:
            ...   # refuse
        elif result.warning:
            ...   # proceed, tell the trader
    """

    def __init__(self, limits: RiskLimitBook, desk_id: str = "MAIN_DESK"):
        self.limits = limits
        self.desk_id = desk_id

    def check(
        self,
        strategy_id: Optional[str],
        trader_id: Optional[str],
        symbol: str,
        venue: str,
        candidate_notional_usd: Decimal,
        live_positions: Iterable[LivePosition],
    ) -> PreTradeResult:
        """
        Evaluate a candidate order against blocks and limits.

        Args:
            strategy_id: Sending strategy (None = UNASSIGNED)
            trader_id: Sending trader (None = HOUSE)
            symbol: Instrument symbol, e.g. "BTCUSDT", "ETHUSDT_250328"
            venue: Venue, e.g. "SPOT", "PERP_USDT"
            candidate_notional_usd: Exposure the order would add
            live_positions: Current valued positions

        Returns:
            PreTradeResult with every check that ran
        """
        candidate = Decimal(str(candidate_notional_usd))
        positions = list(live_positions)
        limits = self.limits.snapshot()
        checks: List[RiskCheckResult] = []

        block = self._check_block(strategy_id, symbol, limits)
        checks.append(block)
        if not block.passed:
            logger.warning(f"Pre-trade HARD BLOCK: {block.reason}")
            return PreTradeResult.rejected_result(block, checks)

        if candidate <= 0:
            logger.debug(
                f"Pre-trade pass: {symbol} on {venue} adds no exposure "
                f"(candidate {candidate}), limits skipped"
            )
            return PreTradeResult.approved_result(checks)

        strategy_key = strategy_id or UNASSIGNED_STRATEGY
        trader_key = trader_id or HOUSE_TRADER
        symbol_key = spot_symbol_for(base_asset_of(symbol))

        limit_checks = [
            (
                RiskCheckName.STRATEGY_LIMIT, LimitType.STRATEGY, strategy_key,
                lambda p: strategy_of(p) == strategy_key,
            ),
            (
                RiskCheckName.SYMBOL_LIMIT, LimitType.SYMBOL, symbol_key,
                lambda p: spot_symbol_for(p.base_asset) == symbol_key,
            ),
            (
                RiskCheckName.TRADER_LIMIT, LimitType.TRADER, trader_key,
                lambda p: trader_of(p) == trader_key,
            ),
            (
                RiskCheckName.VENUE_LIMIT, LimitType.VENUE, venue,
                lambda p: p.venue == venue,
            ),
            (
                RiskCheckName.DESK_LIMIT, LimitType.DESK, self.desk_id,
                lambda p: True,
            ),
        ]

        # A soft breach is held as the warning; later hard limits can still refuse
        soft_failure: Optional[RiskCheckResult] = None
        for name, limit_type, entity_id, selector in limit_checks:
            result = self._check_limit(
                name, limit_type, entity_id, selector, positions, candidate, limits
            )
            checks.append(result)
            if result.passed:
                continue
            if result.is_hard:
                logger.warning(f"Pre-trade HARD BLOCK: {result.reason}")
                return PreTradeResult.rejected_result(result, checks)
            logger.warning(f"Pre-trade WARNING (soft limit): {result.reason}")
            if soft_failure is None:
                soft_failure = result

        if soft_failure is not None:
            return PreTradeResult.warning_result(soft_failure, checks)
        return PreTradeResult.approved_result(checks)

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_block(
        strategy_id: Optional[str],
        symbol: str,
        limits: LimitBookSnapshot
    ) -> RiskCheckResult:
        """Blocks match the exact symbol or the base asset's spot symbol."""
        spot_symbol = spot_symbol_for(base_asset_of(symbol))
        blocked_on = next(
            (s for s in (symbol, spot_symbol) if limits.is_blocked(strategy_id, s)),
            None
        )
        if blocked_on is None:
            return RiskCheckResult(
                name=RiskCheckName.BLOCK_LIST,
                passed=True,
                reason="Not on block list",
                details={"strategy_id": strategy_id, "symbol": symbol},
            )
        return RiskCheckResult(
            name=RiskCheckName.BLOCK_LIST,
            passed=False,
            reason=f"Strategy {strategy_id} is blocked from trading {blocked_on}",
            details={"strategy_id": strategy_id, "symbol": symbol, "blocked_on": blocked_on},
        )

    @staticmethod
    def _check_limit(
        name: RiskCheckName,
        limit_type: LimitType,
        entity_id: str,
        selector: Callable[[LivePosition], bool],
        positions: List[LivePosition],
        candidate: Decimal,
        limits: LimitBookSnapshot,
    ) -> RiskCheckResult:
        current = sum((p.notional_usd for p in positions if selector(p)), ZERO)
        projected = current + candidate
        limit = limits.limit(limit_type, entity_id)
        is_hard = limits.is_hard(limit_type, entity_id)
        details = {
            "entity_id": entity_id,
            "current_gross_usd": str(current),
            "candidate_usd": str(candidate),
            "projected_gross_usd": str(projected),
            "limit_usd": str(limit),
        }

        if projected > limit:
            return RiskCheckResult(
                name=name,
                passed=False,
                reason=(
                    f"{limit_type.value} limit exceeded for {entity_id}: "
                    f"{_usd(projected)} > {_usd(limit)}"
                ),
                details=details,
                threshold=_usd(limit),
                actual=_usd(projected),
                is_hard=is_hard,
            )
        return RiskCheckResult(
            name=name,
            passed=True,
            reason=f"{limit_type.value} {entity_id} within limit",
            details=details,
            threshold=_usd(limit),
            actual=_usd(projected),
            is_hard=is_hard,
        )

