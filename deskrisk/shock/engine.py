"""
Scenario Shock Engine - what-if re-valuation of the live book

For each live position the engine walks the scenario's parameters in list
order and applies every one that matches (scope GLOBAL, ASSET = base asset,
STRATEGY = strategy id), starting from the current mark:

    SPOT_PCT     mark *= 1 + value/100          all venues
    FUTURES_PCT  mark *= 1 + value/100          non-SPOT venues
    FUNDING_ABS  mark += mark * value  (LONG)   perpetual venues
                 mark -= mark * value  (SHORT)

FUNDING_ABS is an approximation: it books a funding-rate change as an
instant price move rather than an accrual over time.

PnL and notional are recomputed at the simulated mark and rolled up
Desk -> Strategy -> Asset. Utilization, breach and margin call are judged
per node against the limit book (ASSET nodes use the SYMBOL limit of
"{base}USDT"). A margin call is flagged when shocked utilization exceeds
margin_call_multiple.

The engine never mutates its inputs and keeps no state between runs, so the
same snapshot and scenario always give the same tree.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..execution.schema import SPOT_VENUE, spot_symbol_for
from ..portfolio.schema import ZERO, LivePosition, unrealized_pnl
from ..risk.hierarchy import strategy_of
from ..risk.limits import LimitBookSnapshot, RiskLimitBook
from ..risk.schema import LimitType, RiskNodeType
from .schema import (
    ShockedPosition,
    ShockParameter,
    ShockResultNode,
    ShockScenario,
    ShockType,
)

logger = logging.getLogger(__name__)

DEFAULT_MARGIN_CALL_MULTIPLE = Decimal("1.2")
PERPETUAL_VENUE_MARKER = "PERP"
HUNDRED = Decimal("100")


def shock_mark(position: LivePosition, parameters: Sequence[ShockParameter]) -> Decimal:
    """Simulated mark after every matching parameter, in order."""
    mark = position.mark_price
    for param in parameters:
        if not param.matches(position):
            continue
        if param.shock_type == ShockType.SPOT_PCT:
            mark = mark * (1 + param.value / HUNDRED)
        elif param.shock_type == ShockType.FUTURES_PCT:
            if position.venue != SPOT_VENUE:
                mark = mark * (1 + param.value / HUNDRED)
        elif param.shock_type == ShockType.FUNDING_ABS:
            if PERPETUAL_VENUE_MARKER in position.venue:
                mark = mark + position.side.sign * mark * param.value
    return mark


def shock_position(position: LivePosition, parameters: Sequence[ShockParameter]) -> ShockedPosition:
    mark = shock_mark(position, parameters)
    return ShockedPosition(
        position=position,
        shock_mark=mark,
        shock_unrealized_pnl=unrealized_pnl(
            position.side, position.quantity, position.avg_entry_price, mark
        ),
        shock_notional_usd=position.quantity * mark,
    )


class ShockEngine:
    """
    Runs shock scenarios against a frozen set of live positions.

    Usage:
        engine = ShockEngine(limit_book, margin_call_multiple=Decimal("1.2"))
        tree = engine.run(btc_crash, valuator.get_positions())
        print(tree.shock_delta_pnl, tree.is_breached)
        for strategy in tree.children:
            print(strategy.name, strategy.shock_utilization, strategy.is_margin_call)
    """

    def __init__(
        self,
        limits: RiskLimitBook,
        desk_id: str = "MAIN_DESK",
        desk_name: str = "GLOBAL DESK",
        margin_call_multiple: Decimal = DEFAULT_MARGIN_CALL_MULTIPLE,
    ):
        margin_call_multiple = Decimal(str(margin_call_multiple))
        if margin_call_multiple <= 0:
            raise ValueError(f"margin_call_multiple must be > 0, got {margin_call_multiple}")

        self.limits = limits
        self.desk_id = desk_id
        self.desk_name = desk_name
        self.margin_call_multiple = margin_call_multiple

    def run(
        self,
        scenario: ShockScenario,
        positions: Iterable[LivePosition],
        limits: Optional[LimitBookSnapshot] = None,
    ) -> ShockResultNode:
        """
        Shock the positions and aggregate the result tree.

        Args:
            scenario: Parameters to apply
            positions: Frozen live positions (e.g. the last valuation snapshot)
            limits: Limit snapshot to judge against (the book's current one if None)
        """
        limits = limits or self.limits.snapshot()
        shocked = [shock_position(p, scenario.parameters) for p in positions]

        by_strategy: Dict[str, List[ShockedPosition]] = {}
        for item in shocked:
            by_strategy.setdefault(strategy_of(item.position), []).append(item)

        strategy_nodes = [
            self._strategy_node(strategy_id, members, limits)
            for strategy_id, members in by_strategy.items()
        ]
        desk = self._node(
            node_id=self.desk_id,
            name=self.desk_name,
            node_type=RiskNodeType.DESK,
            totals=self._sum_children(strategy_nodes),
            limit=limits.limit(LimitType.DESK, self.desk_id),
            children=strategy_nodes,
        )

        logger.info(
            f"Shock {scenario.scenario_id}: {len(shocked)} positions, "
            f"delta PnL {desk.shock_delta_pnl:,.2f}, "
            f"breaches={sum(1 for n in desk.walk() if n.is_breached)}, "
            f"margin calls={sum(1 for n in desk.walk() if n.is_margin_call)}"
        )
        return desk

    def _strategy_node(
        self,
        strategy_id: str,
        shocked: List[ShockedPosition],
        limits: LimitBookSnapshot
    ) -> ShockResultNode:
        by_asset: Dict[str, List[ShockedPosition]] = {}
        for item in shocked:
            by_asset.setdefault(item.position.base_asset, []).append(item)

        asset_nodes = []
        for base, members in by_asset.items():
            asset_nodes.append(self._node(
                node_id=f"{strategy_id}-{base}",
                name=base,
                node_type=RiskNodeType.ASSET,
                totals=self._sum_positions(members),
                limit=limits.limit(LimitType.SYMBOL, spot_symbol_for(base)),
            ))

        return self._node(
            node_id=strategy_id,
            name=strategy_id,
            node_type=RiskNodeType.STRATEGY,
            totals=self._sum_children(asset_nodes),
            limit=limits.limit(LimitType.STRATEGY, strategy_id),
            children=asset_nodes,
        )

    def _node(
        self,
        node_id: str,
        name: str,
        node_type: RiskNodeType,
        totals: Tuple[Decimal, Decimal, Decimal, Decimal],
        limit: Decimal,
        children: Sequence[ShockResultNode] = (),
    ) -> ShockResultNode:
        current_pnl, current_gross, shock_pnl, shock_gross = totals
        shock_utilization = shock_gross / limit
        return ShockResultNode(
            node_id=node_id,
            name=name,
            node_type=node_type,
            current_pnl=current_pnl,
            current_gross=current_gross,
            current_utilization=current_gross / limit,
            shock_pnl=shock_pnl,
            shock_delta_pnl=shock_pnl - current_pnl,
            shock_gross=shock_gross,
            shock_utilization=shock_utilization,
            limit_usd=limit,
            is_breached=shock_gross > limit,
            is_margin_call=shock_utilization > self.margin_call_multiple,
            children=tuple(children),
        )

    @staticmethod
    def _sum_positions(items: List[ShockedPosition]) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        return (
            sum((i.position.unrealized_pnl for i in items), ZERO),
            sum((i.position.notional_usd for i in items), ZERO),
            sum((i.shock_unrealized_pnl for i in items), ZERO),
            sum((i.shock_notional_usd for i in items), ZERO),
        )

    @staticmethod
    def _sum_children(nodes: List[ShockResultNode]) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        return (
            sum((n.current_pnl for n in nodes), ZERO),
            sum((n.current_gross for n in nodes), ZERO),
            sum((n.shock_pnl for n in nodes), ZERO),
            sum((n.shock_gross for n in nodes), ZERO),
        )
