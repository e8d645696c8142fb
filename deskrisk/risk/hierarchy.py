"""
Risk Hierarchy Builder - rolls live positions up into a limit-governed tree

    DESK (1)
     └─ STRATEGY      limit: STRATEGY <strategy_id>     (missing -> UNASSIGNED)
         └─ TRADER    limit: TRADER <trader_id>         (missing -> HOUSE)
             └─ ASSET     limit: SYMBOL <base>USDT
                 └─ VENUE limit: VENUE <venue>

Only VENUE leaves read positions; every other level sums its children, so
gross/net/long/short at any node are derivable from the leaves below it.
Breach (gross > limit) is judged independently at each level. Blocked
strategy/instrument pairs are flagged on the ASSET and VENUE nodes they touch;
they are never dropped from the tree.

Each rebuild is a pure function of (positions, limits, blocks). Results are
cached by (portfolio snapshot version, limit book version), so republishing
an unchanged input costs nothing.
"""

import asyncio
import logging
import threading
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..execution.schema import spot_symbol_for
from ..portfolio.schema import ZERO, LivePosition, PortfolioSnapshot
from .limits import LimitBookSnapshot, RiskLimitBook
from .schema import LimitType, RiskNode, RiskNodeType

logger = logging.getLogger(__name__)

TreeListener = Callable[[RiskNode], None]

UNASSIGNED_STRATEGY = "UNASSIGNED"
HOUSE_TRADER = "HOUSE"
NODE_ID_SEPARATOR = "-"


def strategy_of(position: LivePosition) -> str:
    return position.strategy_id or UNASSIGNED_STRATEGY


def trader_of(position: LivePosition) -> str:
    return position.trader_id or HOUSE_TRADER


def _utilization(gross: Decimal, limit: Decimal) -> Decimal:
    return gross / limit


def _group_by(items: Iterable, key: Callable) -> Dict[str, list]:
    """Group preserving first-seen order."""
    grouped: Dict[str, list] = {}
    for item in items:
        grouped.setdefault(key(item), []).append(item)
    return grouped


class RiskHierarchyBuilder:
    """
    Builds and publishes the Desk -> Strategy -> Trader -> Asset -> Venue tree.

    Usage:
        builder = RiskHierarchyBuilder(limit_book, desk_id="MAIN_DESK")
        valuator.subscribe(builder.on_snapshot)     # rebuild on every valuation
        tree = builder.get_tree()
        for node in tree.breached_nodes():
            print(node.node_id, node.utilization)
    """

    def __init__(
        self,
        limits: RiskLimitBook,
        desk_id: str = "MAIN_DESK",
        desk_name: str = "GLOBAL DESK",
        interval_seconds: float = 0.25,
    ):
        self.limits = limits
        self.desk_id = desk_id
        self.desk_name = desk_name
        self.interval_seconds = interval_seconds

        self._lock = threading.Lock()
        self._tree: Optional[RiskNode] = None
        self._cache_key: Optional[Tuple[int, int]] = None
        self._version = 0
        self._listeners: List[TreeListener] = []
        self._breached: Set[str] = set()
        self._latest_snapshot: Optional[PortfolioSnapshot] = None

    # ------------------------------------------------------------------
    # Pure build
    # ------------------------------------------------------------------

    def build(
        self,
        positions: Iterable[LivePosition],
        limits: LimitBookSnapshot
    ) -> RiskNode:
        """Build a fresh tree from live positions and a limit book snapshot."""
        strategy_nodes = [
            self._strategy_node(strategy_id, members, limits)
            for strategy_id, members in _group_by(positions, strategy_of).items()
        ]
        return self._aggregate(
            node_id=self.desk_id,
            name=self.desk_name,
            node_type=RiskNodeType.DESK,
            children=strategy_nodes,
            limits=limits,
            limit_type=LimitType.DESK,
            entity_id=self.desk_id,
        )

    def _strategy_node(
        self,
        strategy_id: str,
        positions: List[LivePosition],
        limits: LimitBookSnapshot
    ) -> RiskNode:
        trader_nodes = [
            self._trader_node(strategy_id, trader_id, members, limits)
            for trader_id, members in _group_by(positions, trader_of).items()
        ]
        return self._aggregate(
            node_id=strategy_id,
            name=strategy_id.replace("_", " "),
            node_type=RiskNodeType.STRATEGY,
            children=trader_nodes,
            limits=limits,
            limit_type=LimitType.STRATEGY,
            entity_id=strategy_id,
        )

    def _trader_node(
        self,
        strategy_id: str,
        trader_id: str,
        positions: List[LivePosition],
        limits: LimitBookSnapshot
    ) -> RiskNode:
        node_id = NODE_ID_SEPARATOR.join((strategy_id, trader_id))
        asset_nodes = [
            self._asset_node(node_id, strategy_id, base, members, limits)
            for base, members in _group_by(positions, lambda p: p.base_asset).items()
        ]
        return self._aggregate(
            node_id=node_id,
            name=trader_id,
            node_type=RiskNodeType.TRADER,
            children=asset_nodes,
            limits=limits,
            limit_type=LimitType.TRADER,
            entity_id=trader_id,
        )

    def _asset_node(
        self,
        parent_id: str,
        strategy_id: str,
        base_asset: str,
        positions: List[LivePosition],
        limits: LimitBookSnapshot
    ) -> RiskNode:
        node_id = NODE_ID_SEPARATOR.join((parent_id, base_asset))
        venue_nodes = [
            self._venue_node(node_id, strategy_id, venue, members, limits)
            for venue, members in _group_by(positions, lambda p: p.venue).items()
        ]
        symbol = spot_symbol_for(base_asset)
        blocked = limits.is_blocked(strategy_id, symbol) or any(n.is_blocked for n in venue_nodes)
        return self._aggregate(
            node_id=node_id,
            name=base_asset,
            node_type=RiskNodeType.ASSET,
            children=venue_nodes,
            limits=limits,
            limit_type=LimitType.SYMBOL,
            entity_id=symbol,
            is_blocked=blocked,
        )

    def _venue_node(
        self,
        parent_id: str,
        strategy_id: str,
        venue: str,
        positions: List[LivePosition],
        limits: LimitBookSnapshot
    ) -> RiskNode:
        long_usd = sum((p.notional_usd for p in positions if p.side.sign > 0), ZERO)
        short_usd = sum((p.notional_usd for p in positions if p.side.sign < 0), ZERO)
        gross = long_usd + short_usd
        limit = limits.limit(LimitType.VENUE, venue)
        blocked = any(limits.is_blocked(strategy_id, p.symbol) for p in positions)

        return RiskNode(
            node_id=NODE_ID_SEPARATOR.join((parent_id, venue)),
            name=venue,
            node_type=RiskNodeType.VENUE,
            gross_exposure_usd=gross,
            net_exposure_usd=long_usd - short_usd,
            long_exposure_usd=long_usd,
            short_exposure_usd=short_usd,
            limit_usd=limit,
            utilization=_utilization(gross, limit),
            is_breached=gross > limit,
            is_blocked=blocked,
            is_hard_limit=limits.is_hard(LimitType.VENUE, venue),
            position_count=len(positions),
        )

    @staticmethod
    def _aggregate(
        node_id: str,
        name: str,
        node_type: RiskNodeType,
        children: List[RiskNode],
        limits: LimitBookSnapshot,
        limit_type: LimitType,
        entity_id: str,
        is_blocked: bool = False,
    ) -> RiskNode:
        gross = sum((c.gross_exposure_usd for c in children), ZERO)
        limit = limits.limit(limit_type, entity_id)
        return RiskNode(
            node_id=node_id,
            name=name,
            node_type=node_type,
            gross_exposure_usd=gross,
            net_exposure_usd=sum((c.net_exposure_usd for c in children), ZERO),
            long_exposure_usd=sum((c.long_exposure_usd for c in children), ZERO),
            short_exposure_usd=sum((c.short_exposure_usd for c in children), ZERO),
            limit_usd=limit,
            utilization=_utilization(gross, limit),
            is_breached=gross > limit,
            is_blocked=is_blocked,
            is_hard_limit=limits.is_hard(limit_type, entity_id),
            position_count=sum(c.position_count for c in children),
            children=tuple(children),
        )

    # ------------------------------------------------------------------
    # Cached rebuild + publication
    # ------------------------------------------------------------------

    def rebuild(self, snapshot: PortfolioSnapshot) -> Optional[RiskNode]:
        """
        Rebuild for a portfolio snapshot unless (snapshot, limits) are unchanged.

        Returns:
            The current tree (the previous one if the build failed)
        """
        limits = self.limits.snapshot()
        key = (snapshot.version, limits.version)
        with self._lock:
            self._latest_snapshot = snapshot
            if key == self._cache_key:
                return self._tree

        try:
            tree = self.build(snapshot.positions, limits)
        except Exception as e:
            logger.error(
                f"Risk tree rebuild failed for snapshot v{snapshot.version} / "
                f"limits v{limits.version}, keeping previous tree: {e}",
                exc_info=True
            )
            return self.get_tree()

        with self._lock:
            self._tree = tree
            self._cache_key = key
            self._version += 1
            listeners = list(self._listeners)

        self._report_breaches(tree)
        for listener in listeners:
            try:
                listener(tree)
            except Exception as e:
                logger.error(f"Risk tree listener failed: {e}", exc_info=True)
        return tree

    def on_snapshot(self, snapshot: PortfolioSnapshot) -> None:
        """Valuator subscription hook."""
        self.rebuild(snapshot)

    def refresh(self) -> Optional[RiskNode]:
        """Rebuild against the latest snapshot seen (picks up limit changes)."""
        with self._lock:
            snapshot = self._latest_snapshot
        if snapshot is None:
            return None
        return self.rebuild(snapshot)

    async def run(self, stop: asyncio.Event) -> None:
        """Periodic refresh until stop is set. Limit overrides land within one interval."""
        logger.info(f"Risk hierarchy task starting (interval={self.interval_seconds}s)")
        while not stop.is_set():
            self.refresh()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Risk hierarchy task stopped")

    def subscribe(self, listener: TreeListener) -> Callable[[], None]:
        """Register a tree listener. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _report_breaches(self, tree: RiskNode) -> None:
        breached = {node.node_id: node for node in tree.breached_nodes()}
        for node_id in breached.keys() - self._breached:
            node = breached[node_id]
            logger.warning(
                f"Limit breach: {node.node_type.value} {node_id} gross "
                f"${node.gross_exposure_usd:,.0f} > limit ${node.limit_usd:,.0f} "
                f"({float(node.utilization):.1%})"
            )
        for node_id in self._breached - breached.keys():
            logger.info(f"Limit breach cleared: {node_id}")
        self._breached = set(breached.keys())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    def get_tree(self) -> Optional[RiskNode]:
        """Latest tree (immutable), None before the first build."""
        with self._lock:
            return self._tree
