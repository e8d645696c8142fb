"""
Position Netting - how a fill changes the position book

Rules for a fill against the position with the same key:
- No position:             open with the fill's side, qty, price
- Same side:               weighted-average merge
                           qty' = qty + f, avg' = (qty*avg + f*price) / qty'
- Opposite, f < qty:       partial close, avg and side unchanged
- Opposite, f == qty:      position removed
- Opposite, f > qty:       flip to the fill's side, qty' = f - qty, avg' = price

The branches compare f against qty explicitly so a flip never divides by a
zero quantity. Positions are replaced, never mutated, so copies handed to
readers stay consistent.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Optional

from .schema import Fill, Position, PositionKey, Side


class NettingAction(Enum):
    OPEN = "open"
    INCREASE = "increase"
    REDUCE = "reduce"
    CLOSE = "close"
    FLIP = "flip"


@dataclass(frozen=True)
class NettingResult:
    """Outcome of netting one fill."""
    action: NettingAction
    key: PositionKey
    before: Optional[Position]
    after: Optional[Position]             # None when the position was closed
    realized_pnl: Decimal = Decimal("0")  # PnL locked in by the closed quantity


def _realized(position: Position, closed_qty: Decimal, price: Decimal) -> Decimal:
    return (price - position.avg_entry_price) * closed_qty * position.side.sign


def apply_fill(
    positions: Dict[PositionKey, Position],
    fill: Fill,
    new_id: Callable[[], str]
) -> NettingResult:
    """
    Net a fill into the position book in place.

    Args:
        positions: Position book keyed by PositionKey (mutated)
        fill: Validated fill (quantity > 0, price > 0)
        new_id: Factory for new position ids

    Returns:
        NettingResult describing what happened
    """
    key = fill.key
    existing = positions.get(key)

    if existing is None:
        opened = Position(
            position_id=new_id(),
            base_asset=fill.base_asset,
            symbol=fill.symbol,
            venue=fill.venue,
            side=fill.side,
            quantity=fill.quantity,
            avg_entry_price=fill.price,
            created_at=fill.timestamp,
            strategy_id=fill.strategy_id,
            trader_id=fill.trader_id,
        )
        positions[key] = opened
        return NettingResult(NettingAction.OPEN, key, None, opened)

    if existing.side == fill.side:
        new_qty = existing.quantity + fill.quantity
        new_avg = (
            existing.quantity * existing.avg_entry_price + fill.quantity * fill.price
        ) / new_qty
        merged = replace(existing, quantity=new_qty, avg_entry_price=new_avg)
        positions[key] = merged
        return NettingResult(NettingAction.INCREASE, key, existing, merged)

    if fill.quantity < existing.quantity:
        reduced = replace(existing, quantity=existing.quantity - fill.quantity)
        positions[key] = reduced
        return NettingResult(
            NettingAction.REDUCE, key, existing, reduced,
            realized_pnl=_realized(existing, fill.quantity, fill.price),
        )

    if fill.quantity == existing.quantity:
        del positions[key]
        return NettingResult(
            NettingAction.CLOSE, key, existing, None,
            realized_pnl=_realized(existing, existing.quantity, fill.price),
        )

    flipped = Position(
        position_id=new_id(),
        base_asset=fill.base_asset,
        symbol=fill.symbol,
        venue=fill.venue,
        side=fill.side,
        quantity=fill.quantity - existing.quantity,
        avg_entry_price=fill.price,
        created_at=fill.timestamp,
        strategy_id=fill.strategy_id,
        trader_id=fill.trader_id or existing.trader_id,
    )
    positions[key] = flipped
    return NettingResult(
        NettingAction.FLIP, key, existing, flipped,
        realized_pnl=_realized(existing, existing.quantity, fill.price),
    )


def risk_increasing_quantity(
    existing: Optional[Position],
    side: Side,
    quantity: Decimal
) -> Decimal:
    """
    Part of an order's quantity that adds exposure under its key.

    An order opposite to an existing position first nets it down; only the
    excess (a flip) adds new risk.
    """
    if existing is None or existing.side == side:
        return quantity
    if quantity <= existing.quantity:
        return Decimal("0")
    return quantity - existing.quantity
