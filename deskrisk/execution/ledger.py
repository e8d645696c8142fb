"""
Execution Ledger - paper execution with an in-memory order/trade/position book

The ledger is the only writer of orders, trades and positions. Everything it
hands out is a copy, so valuation and risk code can never observe (or cause)
a half-applied fill.

Fill simulation:
- MARKET orders fill at arrival_price * (1 +/- slippage). Slippage is drawn
  uniformly from [0, max_slippage_pct] percent; buys (LONG) pay up, sells
  (SHORT) receive less. Pass a seed to make the draw reproducible.
- Marketable LIMIT orders (LONG limit >= arrival, SHORT limit <= arrival)
  fill at their limit price.
- Non-marketable LIMIT orders rest (GTC) or are cancelled at once (IOC/FOK).

Fills are scheduled fill_delay_seconds after submission on the running
asyncio loop. With a zero delay, or when no loop is running, the fill is
applied inline before submit() returns. Once the execution price has been
drawn the fill is committed: cancel() on such an order is a no-op.

Usage:
    ledger = ExecutionLedger(audit=AuditLog(), fill_delay_seconds=0, seed=7)

    order = ledger.submit(OrderRequest(
        symbol="BTCUSDT",
        venue="PERP_USDT",
        side=Side.SHORT,
        quantity=Decimal("2"),
        arrival_price=Decimal("96800"),
        strategy_id="ARB_DELTA_NEUTRAL",
        trader_id="ALICE",
    ))

    ledger.get_positions()   # copies, netted per (base, symbol, venue, strategy)
"""

import asyncio
import logging
import random
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from ..audit import AuditKind, AuditLog
from .netting import NettingResult, apply_fill
from .schema import (
    Fill,
    Order,
    OrderRequest,
    OrderStatus,
    OrderType,
    Position,
    PositionKey,
    Side,
    TimeInForce,
    Trade,
    ValidationError,
    can_transition,
)

AUDIT_SOURCE = "EXECUTION_LEDGER"

FillListener = Callable[[Trade, NettingResult], None]


class ExecutionLedger:
    """
    Single owner of orders, trades and net positions.

    All mutation happens under one lock; all reads return copies.
    """

    def __init__(
        self,
        audit: Optional[AuditLog] = None,
        fill_delay_seconds: float = 0.0,
        max_slippage_pct: Decimal = Decimal("0.05"),
        seed: Optional[int] = None,
        seed_positions: Optional[Iterable[Position]] = None,
    ):
        """
        Initialize the ledger.

        Args:
            audit: Audit trail for TRADE/COMMAND entries (a private one if None)
            fill_delay_seconds: Delay between submit and fill (0 = inline)
            max_slippage_pct: Upper bound of the random slippage, in percent
            seed: Seed for the slippage generator (None = non-deterministic)
            seed_positions: Positions to start the book with (demo desk, tests)
        """
        if fill_delay_seconds < 0:
            raise ValueError(f"fill_delay_seconds must be >= 0, got {fill_delay_seconds}")
        if max_slippage_pct < 0:
            raise ValueError(f"max_slippage_pct must be >= 0, got {max_slippage_pct}")

        self.audit = audit if audit is not None else AuditLog()
        self.fill_delay_seconds = fill_delay_seconds
        self.max_slippage_pct = Decimal(str(max_slippage_pct))
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self._rng = random.Random(seed)
        self._lock = threading.RLock()
        self._orders: Dict[str, Order] = {}
        self._trades: List[Trade] = []
        self._positions: Dict[PositionKey, Position] = {}
        self._committed: Set[str] = set()
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[FillListener] = []
        self._realized_pnl = Decimal("0")
        self._version = 0

        if seed_positions:
            self._load_positions(seed_positions)

        self.logger.info(
            f"Execution ledger initialized: "
            f"positions={len(self._positions)}, "
            f"fill_delay={fill_delay_seconds}s, "
            f"max_slippage={self.max_slippage_pct}%"
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(self, request: OrderRequest, user: Optional[str] = None) -> Order:
        """
        Accept an order request and schedule its fill.

        Raises:
            ValidationError: Malformed request (nothing is recorded)

        Returns:
            Copy of the accepted order (status NEW unless filled inline)
        """
        request.validate()

        order = Order(
            order_id=f"ord_{uuid.uuid4().hex[:12]}",
            symbol=request.symbol,
            base_asset=request.base,
            venue=request.venue,
            side=request.side,
            requested_qty=request.quantity,
            order_type=request.order_type,
            time_in_force=request.time_in_force,
            submitted_at=datetime.utcnow(),
            price=request.price,
            arrival_price=request.arrival_price,
            strategy_id=request.strategy_id,
            trader_id=request.trader_id,
            client_order_id=request.client_order_id,
        )

        with self._lock:
            self._orders[order.order_id] = order
            self._version += 1

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.COMMAND,
            f"Order {order.order_id} accepted: {order.side.value} {order.requested_qty} "
            f"{order.symbol} on {order.venue} ({order.order_type.value})",
            user=user or order.trader_id or "SYSTEM",
            payload=request.to_dict(),
        )

        if order.order_type == OrderType.MARKET:
            exec_price = self._slipped_price(request.arrival_price, request.side)
            self._schedule_fill(order.order_id, exec_price)
        elif self._is_marketable(request):
            self._schedule_fill(order.order_id, request.price)
        elif order.time_in_force in (TimeInForce.IOC, TimeInForce.FOK):
            self._close_unfilled(order.order_id, f"{order.time_in_force.value} limit not marketable")
        else:
            self.logger.info(
                f"Limit order {order.order_id} resting: {order.side.value} "
                f"{order.requested_qty} {order.symbol} @ {order.price}"
            )

        return self.get_order(order.order_id)

    def fill(
        self,
        order: Union[Order, str],
        exec_price: Decimal,
        qty: Optional[Decimal] = None
    ) -> Optional[Trade]:
        """
        Apply a fill to an open order.

        Args:
            order: Order (or order id) to fill
            exec_price: Execution price
            qty: Fill quantity (defaults to the remaining quantity)

        Raises:
            ValidationError: Non-positive price/qty or qty above remaining

        Returns:
            The Trade, or None if the order is unknown or no longer open
        """
        order_id = order if isinstance(order, str) else order.order_id
        exec_price = Decimal(str(exec_price))

        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                self.logger.warning(f"Fill ignored: unknown order {order_id}")
                return None
            if not current.status.is_open:
                self.logger.warning(
                    f"Fill ignored: order {order_id} is {current.status.value}"
                )
                return None

            fill_qty = current.remaining_qty if qty is None else Decimal(str(qty))
            if exec_price <= 0:
                raise ValidationError(f"exec_price must be > 0, got {exec_price}")
            if fill_qty <= 0:
                raise ValidationError(f"fill qty must be > 0, got {fill_qty}")
            if fill_qty > current.remaining_qty:
                raise ValidationError(
                    f"fill qty {fill_qty} exceeds remaining {current.remaining_qty} "
                    f"on order {order_id}"
                )

            now = datetime.utcnow()
            new_filled = current.filled_qty + fill_qty
            previous_cost = current.filled_qty * (current.avg_fill_price or Decimal("0"))
            new_avg = (previous_cost + fill_qty * exec_price) / new_filled
            new_status = (
                OrderStatus.FILLED if new_filled == current.requested_qty
                else OrderStatus.PARTIALLY_FILLED
            )
            self._transition(current, new_status)
            current.filled_qty = new_filled
            current.avg_fill_price = new_avg
            if current.first_fill_at is None:
                current.first_fill_at = now
            if new_status == OrderStatus.FILLED:
                current.full_fill_at = now

            trade = Trade(
                trade_id=f"trd_{uuid.uuid4().hex[:12]}",
                order_id=order_id,
                symbol=current.symbol,
                venue=current.venue,
                side=current.side,
                price=exec_price,
                quantity=fill_qty,
                timestamp=now,
                strategy_id=current.strategy_id,
                trader_id=current.trader_id,
            )
            self._trades.append(trade)

            netting = apply_fill(
                self._positions,
                Fill(
                    base_asset=current.base_asset,
                    symbol=current.symbol,
                    venue=current.venue,
                    side=current.side,
                    quantity=fill_qty,
                    price=exec_price,
                    strategy_id=current.strategy_id,
                    trader_id=current.trader_id,
                    timestamp=now,
                ),
                self._new_position_id,
            )
            self._realized_pnl += netting.realized_pnl
            self._version += 1
            listeners = list(self._listeners)

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.TRADE,
            f"Filled {order_id}: {trade.side.value} {fill_qty} {trade.symbol} "
            f"@ {exec_price} on {trade.venue} -> position {netting.action.value}",
            user=trade.trader_id or "SYSTEM",
            payload={
                **trade.to_dict(),
                "netting": netting.action.value,
                "realized_pnl": str(netting.realized_pnl),
            },
        )
        self.logger.info(
            f"Fill [{netting.action.value.upper()}]: {trade.trade_id} {order_id} "
            f"{fill_qty} {trade.symbol} @ {exec_price} ({new_status.value})"
        )

        for listener in listeners:
            try:
                listener(trade, netting)
            except Exception as e:
                self.logger.error(f"Fill listener failed: {e}", exc_info=True)

        return trade

    def cancel(self, order_id: str, user: str = "SYSTEM", reason: str = "") -> bool:
        """
        Cancel an open order. Never raises.

        Returns:
            True if the order moved to CANCELLED, False for any no-op
            (unknown id, terminal order, fill already committed)
        """
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                self.logger.info(f"Cancel ignored: unknown order {order_id}")
                return False
            if not order.status.is_open:
                self.logger.info(
                    f"Cancel ignored: order {order_id} already {order.status.value}"
                )
                return False
            if order_id in self._committed:
                self.logger.info(f"Cancel ignored: fill for {order_id} already committed")
                return False
            self._transition(order, OrderStatus.CANCELLED)
            order.status_reason = reason or "cancelled"
            self._version += 1

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.COMMAND,
            f"Order {order_id} cancelled" + (f": {reason}" if reason else ""),
            user=user,
        )
        return True

    def subscribe(self, listener: FillListener) -> Callable[[], None]:
        """Register a fill listener. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def reset(self, seed_positions: Optional[Iterable[Position]] = None) -> None:
        """Clear orders, trades and positions, optionally reloading a seed book."""
        with self._lock:
            for handle in self._pending.values():
                handle.cancel()
            self._pending.clear()
            self._committed.clear()
            self._orders.clear()
            self._trades.clear()
            self._positions.clear()
            self._realized_pnl = Decimal("0")
            if seed_positions:
                self._load_positions(seed_positions)
            self._version += 1
            count = len(self._positions)

        self.audit.record(AUDIT_SOURCE, AuditKind.SYSTEM, f"Ledger reset ({count} seed positions)")

    # ------------------------------------------------------------------
    # Reads (copies only)
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        """Incremented on every mutation of orders, trades or positions."""
        return self._version

    @property
    def realized_pnl(self) -> Decimal:
        return self._realized_pnl

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return replace(order) if order else None

    def get_orders(self) -> List[Order]:
        """All orders, oldest first."""
        with self._lock:
            return [replace(o) for o in self._orders.values()]

    def get_active_orders(self) -> List[Order]:
        with self._lock:
            return [replace(o) for o in self._orders.values() if o.status.is_open]

    def get_trades(self) -> List[Trade]:
        """All trades, oldest first. Trades are immutable."""
        with self._lock:
            return list(self._trades)

    def get_positions(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    def get_position(self, key: PositionKey) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(key)
            return replace(position) if position else None

    def has_pending_fill(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._committed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_positions(self, positions: Iterable[Position]) -> None:
        for position in positions:
            if position.quantity <= 0:
                raise ValidationError(
                    f"seed position {position.symbol} must have quantity > 0, "
                    f"got {position.quantity}"
                )
            if not position.position_id:
                position = replace(position, position_id=self._new_position_id())
            if position.key in self._positions:
                raise ValidationError(f"duplicate seed position for {position.key}")
            self._positions[position.key] = replace(position)

    @staticmethod
    def _new_position_id() -> str:
        return f"pos_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _is_marketable(request: OrderRequest) -> bool:
        if request.arrival_price is None or request.price is None:
            return False
        if request.side == Side.LONG:
            return request.price >= request.arrival_price
        return request.price <= request.arrival_price

    def _slipped_price(self, arrival: Decimal, side: Side) -> Decimal:
        """Arrival price moved against the order by a random bounded slippage."""
        slippage_pct = Decimal(str(self._rng.uniform(0, float(self.max_slippage_pct))))
        return arrival * (1 + side.sign * slippage_pct / 100)

    def _transition(self, order: Order, new_status: OrderStatus) -> None:
        if not can_transition(order.status, new_status):
            raise ValidationError(
                f"illegal status move {order.status.value} -> {new_status.value} "
                f"on order {order.order_id}"
            )
        order.status = new_status

    def _close_unfilled(self, order_id: str, reason: str) -> None:
        with self._lock:
            order = self._orders[order_id]
            self._transition(order, OrderStatus.CANCELLED)
            order.status_reason = reason
            self._version += 1
        self.audit.record(AUDIT_SOURCE, AuditKind.COMMAND, f"Order {order_id} cancelled: {reason}")

    def _schedule_fill(self, order_id: str, exec_price: Decimal) -> None:
        """Commit exec_price for order_id and fill now or after the delay."""
        with self._lock:
            self._committed.add(order_id)

        loop = None
        if self.fill_delay_seconds > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.logger.debug(f"No running event loop, filling {order_id} inline")

        if loop is None:
            self._run_committed_fill(order_id, exec_price)
            return

        handle = loop.call_later(
            self.fill_delay_seconds, self._run_committed_fill, order_id, exec_price
        )
        with self._lock:
            self._pending[order_id] = handle

    def _run_committed_fill(self, order_id: str, exec_price: Decimal) -> None:
        try:
            self.fill(order_id, exec_price)
        except Exception as e:
            self.logger.error(f"Scheduled fill for {order_id} failed: {e}", exc_info=True)
        finally:
            with self._lock:
                self._committed.discard(order_id)
                self._pending.pop(order_id, None)
