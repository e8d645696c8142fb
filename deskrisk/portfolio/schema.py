"""
Portfolio Schema - valued views of the position book

Everything here is derived and immutable: a PortfolioSnapshot is computed in
full on each valuation tick and then published as a whole.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional, Tuple

from ..execution.schema import Position, Side

ZERO = Decimal("0")


def unrealized_pnl(side: Side, quantity: Decimal, entry: Decimal, mark: Decimal) -> Decimal:
    """(mark - entry) * qty for LONG, (entry - mark) * qty for SHORT."""
    return (mark - entry) * quantity * side.sign


def pnl_percent(side: Side, entry: Decimal, mark: Decimal) -> float:
    """Price move in the position's favour, in percent of entry."""
    if entry == 0:
        return 0.0
    return float((mark - entry) * side.sign / entry * 100)


@dataclass(frozen=True)
class LivePosition:
    """A position valued at a mark price."""
    position_id: str
    base_asset: str
    symbol: str
    venue: str
    side: Side
    quantity: Decimal
    avg_entry_price: Decimal
    created_at: datetime
    strategy_id: Optional[str]
    trader_id: Optional[str]
    mark_price: Decimal
    notional_usd: Decimal
    unrealized_pnl: Decimal
    pnl_percent: float
    is_stale: bool = False   # True when mark_price fell back to avg_entry_price

    @classmethod
    def from_position(
        cls,
        position: Position,
        mark_price: Optional[Decimal]
    ) -> "LivePosition":
        """Value a position; a missing mark falls back to entry and flags stale."""
        is_stale = mark_price is None
        mark = position.avg_entry_price if is_stale else mark_price
        return cls(
            position_id=position.position_id,
            base_asset=position.base_asset,
            symbol=position.symbol,
            venue=position.venue,
            side=position.side,
            quantity=position.quantity,
            avg_entry_price=position.avg_entry_price,
            created_at=position.created_at,
            strategy_id=position.strategy_id,
            trader_id=position.trader_id,
            mark_price=mark,
            notional_usd=position.quantity * mark,
            unrealized_pnl=unrealized_pnl(
                position.side, position.quantity, position.avg_entry_price, mark
            ),
            pnl_percent=pnl_percent(position.side, position.avg_entry_price, mark),
            is_stale=is_stale,
        )

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.side.sign

    @property
    def signed_notional(self) -> Decimal:
        return self.notional_usd * self.side.sign

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "base_asset": self.base_asset,
            "symbol": self.symbol,
            "venue": self.venue,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "avg_entry_price": str(self.avg_entry_price),
            "strategy_id": self.strategy_id,
            "trader_id": self.trader_id,
            "mark_price": str(self.mark_price),
            "notional_usd": str(self.notional_usd),
            "unrealized_pnl": str(self.unrealized_pnl),
            "pnl_percent": round(self.pnl_percent, 4),
            "is_stale": self.is_stale,
        }


@dataclass(frozen=True)
class PortfolioGroup:
    """All live positions on one base asset."""
    base_asset: str
    positions: Tuple[LivePosition, ...]
    net_delta_base: Decimal
    net_delta_usd: Decimal
    total_pnl: Decimal

    @classmethod
    def from_positions(cls, base_asset: str, positions: Tuple[LivePosition, ...]) -> "PortfolioGroup":
        return cls(
            base_asset=base_asset,
            positions=positions,
            net_delta_base=sum((p.signed_quantity for p in positions), ZERO),
            net_delta_usd=sum((p.signed_notional for p in positions), ZERO),
            total_pnl=sum((p.unrealized_pnl for p in positions), ZERO),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_asset": self.base_asset,
            "net_delta_base": str(self.net_delta_base),
            "net_delta_usd": str(self.net_delta_usd),
            "total_pnl": str(self.total_pnl),
            "positions": [p.to_dict() for p in self.positions],
        }


@dataclass(frozen=True)
class RiskMetrics:
    """Desk-level figures for one valuation tick."""
    wallet_balance: Decimal
    total_equity: Decimal
    total_pnl: Decimal
    realized_pnl: Decimal
    net_delta_usd: Decimal
    long_exposure: Decimal
    short_exposure: Decimal
    leverage: Decimal          # 0 whenever total_equity <= 0
    stale_positions: int = 0

    @property
    def gross_exposure(self) -> Decimal:
        return self.long_exposure + self.short_exposure

    @classmethod
    def empty(cls) -> "RiskMetrics":
        return cls(
            wallet_balance=ZERO,
            total_equity=ZERO,
            total_pnl=ZERO,
            realized_pnl=ZERO,
            net_delta_usd=ZERO,
            long_exposure=ZERO,
            short_exposure=ZERO,
            leverage=ZERO,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_balance": str(self.wallet_balance),
            "total_equity": str(self.total_equity),
            "total_pnl": str(self.total_pnl),
            "realized_pnl": str(self.realized_pnl),
            "net_delta_usd": str(self.net_delta_usd),
            "long_exposure": str(self.long_exposure),
            "short_exposure": str(self.short_exposure),
            "gross_exposure": str(self.gross_exposure),
            "leverage": str(self.leverage),
            "stale_positions": self.stale_positions,
        }


@dataclass(frozen=True)
class CarryMetric:
    """Spot vs perpetual carry for one base asset."""
    base_asset: str
    spot_price: Decimal
    perp_price: Decimal
    basis_bps: Decimal
    funding_rate: Decimal
    funding_apr: Decimal       # Percent, see PortfolioValuator.funding_events_per_day

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_asset": self.base_asset,
            "spot_price": str(self.spot_price),
            "perp_price": str(self.perp_price),
            "basis_bps": str(self.basis_bps),
            "funding_rate": str(self.funding_rate),
            "funding_apr": str(self.funding_apr),
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    """One complete valuation. Published atomically, never partially."""
    version: int
    as_of: datetime
    positions: Tuple[LivePosition, ...]
    groups: Tuple[PortfolioGroup, ...]
    metrics: RiskMetrics
    carry: Tuple[CarryMetric, ...]
    ledger_version: int = 0
    stale_symbols: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def empty(cls) -> "PortfolioSnapshot":
        return cls(
            version=0,
            as_of=datetime.utcnow(),
            positions=(),
            groups=(),
            metrics=RiskMetrics.empty(),
            carry=(),
        )

    def group(self, base_asset: str) -> Optional[PortfolioGroup]:
        for group in self.groups:
            if group.base_asset == base_asset:
                return group
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "as_of": self.as_of.isoformat(),
            "ledger_version": self.ledger_version,
            "metrics": self.metrics.to_dict(),
            "groups": [g.to_dict() for g in self.groups],
            "carry": [c.to_dict() for c in self.carry],
            "stale_symbols": sorted(self.stale_symbols),
        }
