"""
Desk Context - owns and wires the desk's components

Coordinates:
- Price cache (fed by market data collaborators)
- Execution ledger (the only writer of orders, trades and positions)
- Portfolio valuator (periodic mark-to-market)
- Risk hierarchy builder (rebuilt on every valuation and on limit changes)
- Pre-trade risk gate (synchronous, on the order path)
- Shock engine (on demand, against the last valuation)
- Limit book, strategy registry, account registry and audit trail

There are no module-level singletons: every component is created here (or
injected) and a demo/test seed book is an explicit constructor argument.

Order path (submit_order):
    arrival price -> strategy state -> candidate notional -> gate -> ledger

The gate sees the ledger book valued at current prices plus the open orders
still to fill, so back-to-back orders are judged against each other.

Usage:
    desk = DeskContext(DeskConfig(fill_delay_seconds=0), limits=book)
    desk.update_price("BTCUSDT", bid=Decimal("96490"), ask=Decimal("96510"),
                      mark=Decimal("96520"))
    desk.tick()

    submission = desk.submit_order(OrderRequest(
        symbol="BTCUSDT", venue="SPOT", side=Side.LONG, quantity=Decimal("1"),
        strategy_id="ARB_DELTA_NEUTRAL", trader_id="ALICE",
    ))
    if not submission.accepted:
        print(submission.reason)

    await desk.run()      # periodic valuation + risk until desk.shutdown()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from .audit import AuditEntry, AuditKind, AuditLog
from .config import DeskConfig
from .execution import (
    ExecutionLedger,
    Order,
    OrderRequest,
    OrderType,
    Position,
    SPOT_VENUE,
    Trade,
    risk_increasing_quantity,
    spot_symbol_for,
)
from .market import PriceCache
from .portfolio import (
    AccountRegistry,
    CarryMetric,
    LivePosition,
    PortfolioGroup,
    PortfolioSnapshot,
    PortfolioValuator,
    RiskMetrics,
)
from .risk import (
    LimitOverride,
    LimitType,
    PreTradeResult,
    PreTradeRiskGate,
    RiskHierarchyBuilder,
    RiskLimitBook,
    RiskNode,
    StrategyRegistry,
    StrategyState,
    StrategyStateChange,
)
from .shock import ShockEngine, ShockResultNode, ShockScenario, default_scenarios, load_scenarios

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "DESK"


@dataclass
class OrderSubmission:
    """
    Outcome of DeskContext.submit_order.

    accepted=False means the order never reached the ledger; check says why.
    accepted=True with check.warning set means a soft limit was crossed.
    """
    accepted: bool
    check: PreTradeResult
    order: Optional[Order] = None

    @property
    def warning(self) -> Optional[str]:
        return self.check.warning

    @property
    def reason(self) -> Optional[str]:
        return self.check.reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "order": self.order.to_dict() if self.order else None,
            "check": self.check.to_dict(),
        }


class DeskContext:
    """The desk's single owning context."""

    def __init__(
        self,
        config: Optional[DeskConfig] = None,
        limits: Optional[RiskLimitBook] = None,
        strategies: Optional[StrategyRegistry] = None,
        seed_positions: Optional[Iterable[Position]] = None,
        scenarios: Optional[Dict[str, ShockScenario]] = None,
        prices: Optional[PriceCache] = None,
        audit: Optional[AuditLog] = None,
    ):
        """
        Initialize the desk.

        Args:
            config: Desk configuration (defaults if None)
            limits: Shared limit book (an empty, unbounded one if None)
            strategies: Strategy registry (empty if None)
            seed_positions: Positions the ledger starts with
            scenarios: Named shock scenarios (the default library if None)
            prices: Price cache (a fresh one if None)
            audit: Audit trail (one sized from config if None)
        """
        self.config = config or DeskConfig()
        cfg = self.config

        self.audit = audit if audit is not None else AuditLog(capacity=cfg.audit_capacity)
        self.prices = prices if prices is not None else PriceCache()
        self.limits = limits or RiskLimitBook(
            default_limit_usd=cfg.default_limit_usd, audit=self.audit
        )
        self.strategies = strategies or StrategyRegistry(audit=self.audit)
        self.accounts = AccountRegistry(cfg.account_balances, audit=self.audit)
        self.scenarios = scenarios if scenarios is not None else default_scenarios()

        self.ledger = ExecutionLedger(
            audit=self.audit,
            fill_delay_seconds=cfg.fill_delay_seconds,
            max_slippage_pct=cfg.max_slippage_pct,
            seed=cfg.slippage_seed,
            seed_positions=seed_positions,
        )
        self.valuator = PortfolioValuator(
            self.ledger,
            self.prices,
            self.accounts,
            interval_seconds=cfg.valuation_interval_seconds,
            funding_events_per_day=cfg.funding_events_per_day,
        )
        self.risk_builder = RiskHierarchyBuilder(
            self.limits,
            desk_id=cfg.desk_id,
            desk_name=cfg.desk_name,
            interval_seconds=cfg.risk_interval_seconds,
        )
        self.gate = PreTradeRiskGate(self.limits, desk_id=cfg.desk_id)
        self.shock_engine = ShockEngine(
            self.limits,
            desk_id=cfg.desk_id,
            desk_name=cfg.desk_name,
            margin_call_multiple=cfg.margin_call_multiple,
        )

        self._unsubscribe = [self.valuator.subscribe(self.risk_builder.on_snapshot)]
        self._order_lock = threading.RLock()
        self._shutdown = False
        self._stop: Optional[asyncio.Event] = None

        logger.info(
            f"Desk {cfg.desk_id} initialized: "
            f"positions={len(self.ledger.get_positions())}, "
            f"limits={len(self.limits.get_limits())}, "
            f"strategies={len(self.strategies.get_all())}, "
            f"accounts={len(self.accounts.get_all_balances())}"
        )

    @classmethod
    def from_yaml(
        cls,
        path: str = "config.yaml",
        seed_positions: Optional[Iterable[Position]] = None,
    ) -> "DeskContext":
        """Build a desk from one YAML file (desk, accounts, limits, blocks, strategies, scenarios)."""
        config = DeskConfig.load_from_yaml(path)
        audit = AuditLog(capacity=config.audit_capacity)
        limits = RiskLimitBook.load_from_yaml(
            path, default_limit_usd=config.default_limit_usd, audit=audit
        )
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        return cls(
            config=config,
            limits=limits,
            strategies=StrategyRegistry.from_dict(raw, audit=audit),
            seed_positions=seed_positions,
            scenarios=load_scenarios(raw),
            audit=audit,
        )

    # ------------------------------------------------------------------
    # Inbound: market data
    # ------------------------------------------------------------------

    def update_price(
        self,
        symbol: str,
        bid: Optional[Decimal] = None,
        ask: Optional[Decimal] = None,
        mark: Optional[Decimal] = None,
        funding_rate: Optional[Decimal] = None,
    ) -> None:
        """Forward a tick to the price cache. Never waits on valuation."""
        self.prices.update(symbol, bid=bid, ask=ask, mark=mark, funding_rate=funding_rate)

    # ------------------------------------------------------------------
    # Inbound: orders
    # ------------------------------------------------------------------

    def submit_order(self, request: OrderRequest, user: Optional[str] = None) -> OrderSubmission:
        """
        Run an order request through the pre-trade path and into the ledger.

        Raises:
            ValidationError: Malformed request (nothing is recorded)

        Returns:
            OrderSubmission - refused orders never reach the ledger
        """
        if request.arrival_price is None:
            arrival = self.arrival_price(request.symbol, request.venue, request.base)
            if arrival is not None:
                request = replace(request, arrival_price=arrival)
        request.validate()

        # Check and submit under one lock so concurrent orders see each other
        with self._order_lock:
            existing = self.ledger.get_position(request.position_key)
            increasing_qty = risk_increasing_quantity(existing, request.side, request.quantity)
            reduces_risk = increasing_qty == 0

            state_check = self.strategies.check_order(request.strategy_id, reduces_risk)
            if not state_check.passed:
                return self._refuse(
                    request, PreTradeResult.rejected_result(state_check, [state_check]), user
                )

            reference = request.reference_price or Decimal("0")
            check = self.gate.check(
                strategy_id=request.strategy_id,
                trader_id=request.trader_id,
                symbol=request.symbol,
                venue=request.venue,
                candidate_notional_usd=increasing_qty * reference,
                live_positions=self.gate_exposure(),
            )
            check.checks.insert(0, state_check)
            if check.hard_block:
                return self._refuse(request, check, user)

            order = self.ledger.submit(request, user=user)
        if check.warning:
            logger.warning(f"Order {order.order_id} accepted with warning: {check.warning}")
        return OrderSubmission(accepted=True, check=check, order=order)

    def gate_exposure(self) -> List[LivePosition]:
        """
        Exposure the gate judges a new order against.

        The ledger book valued at current prices (not the last published
        snapshot), plus the risk-increasing remainder of every open order:
        committed fills not yet applied and resting LIMIT orders.
        """
        positions = self.ledger.get_positions()
        live = self.valuator.mark_positions(positions)
        book = {p.key: p for p in positions}

        for order in self.ledger.get_active_orders():
            qty = risk_increasing_quantity(
                book.get(order.position_key), order.side, order.remaining_qty
            )
            price = order.price if order.order_type == OrderType.LIMIT else order.arrival_price
            if qty <= 0 or not price:
                continue
            pending = Position(
                position_id=order.order_id,
                base_asset=order.base_asset,
                symbol=order.symbol,
                venue=order.venue,
                side=order.side,
                quantity=qty,
                avg_entry_price=price,
                created_at=order.submitted_at,
                strategy_id=order.strategy_id,
                trader_id=order.trader_id,
            )
            live.append(LivePosition.from_position(pending, price))
        return live

    def cancel_order(self, order_id: str, user: str = "SYSTEM", reason: str = "") -> bool:
        """Idempotent; False when there was nothing to cancel."""
        return self.ledger.cancel(order_id, user=user, reason=reason)

    def arrival_price(
        self,
        symbol: str,
        venue: str,
        base_asset: Optional[str] = None
    ) -> Optional[Decimal]:
        """Current reference price: spot mid for SPOT, mark (else mid) for derivatives."""
        if venue == SPOT_VENUE:
            spot = spot_symbol_for(base_asset) if base_asset else symbol
            return self.prices.mid(spot) or self.prices.mid(symbol)
        return self.prices.mark(symbol) or self.prices.mid(symbol)

    def _refuse(
        self,
        request: OrderRequest,
        check: PreTradeResult,
        user: Optional[str]
    ) -> OrderSubmission:
        failure = check.first_failure
        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.RISK,
            f"Order refused: {request.side.value} {request.quantity} {request.symbol} "
            f"on {request.venue} - {check.reason}",
            user=user or request.trader_id or "SYSTEM",
            payload={
                "request": request.to_dict(),
                "check": failure.name.value if failure else None,
            },
        )
        return OrderSubmission(accepted=False, check=check)

    # ------------------------------------------------------------------
    # Inbound: risk administration
    # ------------------------------------------------------------------

    def update_limit(
        self,
        entity_id: str,
        new_limit: Decimal,
        user: str,
        reason: str,
        limit_type: Optional[LimitType] = None,
    ) -> LimitOverride:
        """Audited limit override; the risk tree is rebuilt straight away."""
        override = self.limits.update_limit(entity_id, new_limit, user, reason, limit_type)
        self.risk_builder.refresh()
        return override

    def update_strategy_state(
        self,
        strategy_id: str,
        new_state: StrategyState,
        user: str,
        reason: str
    ) -> StrategyStateChange:
        return self.strategies.update_state(strategy_id, new_state, user, reason)

    def set_account_balance(self, account_id: str, amount: Decimal, user: str = "SYSTEM") -> None:
        self.accounts.set_balance(account_id, amount, user=user)

    # ------------------------------------------------------------------
    # Outbound reads (copies / immutable values)
    # ------------------------------------------------------------------

    def get_positions(self) -> List[Position]:
        return self.ledger.get_positions()

    def get_live_positions(self) -> List[LivePosition]:
        return self.valuator.get_positions()

    def get_orders(self) -> List[Order]:
        return self.ledger.get_orders()

    def get_trades(self) -> List[Trade]:
        return self.ledger.get_trades()

    def get_groups(self) -> List[PortfolioGroup]:
        return self.valuator.get_groups()

    def get_metrics(self) -> RiskMetrics:
        return self.valuator.get_metrics()

    def get_carry(self) -> List[CarryMetric]:
        return self.valuator.get_carry()

    def get_snapshot(self) -> PortfolioSnapshot:
        return self.valuator.snapshot

    def get_tree(self) -> Optional[RiskNode]:
        return self.risk_builder.get_tree()

    def get_override_log(self) -> Tuple[LimitOverride, ...]:
        return self.limits.get_override_log()

    def get_audit_log(
        self,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None
    ) -> List[AuditEntry]:
        return self.audit.entries(kind=kind, limit=limit)

    # ------------------------------------------------------------------
    # Shock
    # ------------------------------------------------------------------

    def run_shock(self, scenario: Union[ShockScenario, str]) -> ShockResultNode:
        """
        Stress the last valuation under a scenario (object or scenario id).

        Raises:
            KeyError: Unknown scenario id
        """
        if isinstance(scenario, str):
            if scenario not in self.scenarios:
                raise KeyError(f"Unknown shock scenario {scenario}")
            scenario = self.scenarios[scenario]
        return self.shock_engine.run(
            scenario, self.valuator.snapshot.positions, self.limits.snapshot()
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def tick(self) -> Tuple[PortfolioSnapshot, Optional[RiskNode]]:
        """One synchronous valuation + risk rebuild (deterministic use)."""
        snapshot = self.valuator.tick()
        tree = self.risk_builder.rebuild(snapshot)
        return snapshot, tree

    async def run(self) -> None:
        """
        Run the periodic valuation and risk tasks.

        Runs until shutdown() is called.
        """
        logger.info(f"Desk {self.config.desk_id} starting...")
        self._stop = asyncio.Event()
        if self._shutdown:
            self._stop.set()

        await asyncio.gather(
            self.valuator.run(self._stop),
            self.risk_builder.run(self._stop),
        )
        logger.info(f"Desk {self.config.desk_id} shutdown complete")

    def shutdown(self) -> None:
        """Signal graceful shutdown."""
        logger.info("Shutdown requested")
        self._shutdown = True
        if self._stop is not None:
            self._stop.set()

    def close(self) -> None:
        """Detach internal subscriptions."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    def get_status(self) -> Dict[str, Any]:
        """Current desk status."""
        tree = self.get_tree()
        snapshot = self.valuator.snapshot
        return {
            "desk_id": self.config.desk_id,
            "running": self._stop is not None and not self._shutdown,
            "valuation_version": snapshot.version,
            "ledger_version": self.ledger.version,
            "limits_version": self.limits.version,
            "risk_tree_version": self.risk_builder.version,
            "positions": len(snapshot.positions),
            "active_orders": len(self.ledger.get_active_orders()),
            "breaches": [n.node_id for n in tree.breached_nodes()] if tree else [],
            "metrics": snapshot.metrics.to_dict(),
        }
