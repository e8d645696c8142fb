"""
Execution Module - paper order execution and the net position book

Key Types:
- OrderRequest: symbol, venue, side, quantity, type, price, arrival_price
- Order: lifecycle record (status, filled_qty, avg_fill_price, timestamps)
- Trade: immutable fill record
- Position: net position per (base_asset, symbol, venue, strategy_id)

Usage:
    from deskrisk.execution import ExecutionLedger, OrderRequest, Side

    ledger = ExecutionLedger(fill_delay_seconds=0, seed=42)
    order = ledger.submit(OrderRequest(
        symbol="ETHUSDT",
        venue="SPOT",
        side=Side.LONG,
        quantity=Decimal("10"),
        arrival_price=Decimal("2650"),
        strategy_id="ARB_DELTA_NEUTRAL",
    ))

    print(order.status, order.avg_fill_price, order.slippage_pct)
    print([p.to_dict() for p in ledger.get_positions()])
"""

from .schema import (
    Fill,
    Order,
    OrderRequest,
    OrderStatus,
    OrderType,
    Position,
    PositionKey,
    Side,
    SPOT_VENUE,
    TimeInForce,
    Trade,
    ValidationError,
    base_asset_of,
    spot_symbol_for,
)
from .netting import NettingAction, NettingResult, apply_fill, risk_increasing_quantity
from .ledger import ExecutionLedger

__all__ = [
    # Schema
    "Fill",
    "Order",
    "OrderRequest",
    "OrderStatus",
    "OrderType",
    "Position",
    "PositionKey",
    "Side",
    "SPOT_VENUE",
    "TimeInForce",
    "Trade",
    "ValidationError",
    "base_asset_of",
    "spot_symbol_for",
    # Netting
    "NettingAction",
    "NettingResult",
    "apply_fill",
    "risk_increasing_quantity",
    # Ledger
    "ExecutionLedger",
]
