"""
Execution Schema - Orders, Trades and Positions

Every order carries its full lifecycle (status, fill quantity, weighted fill
price, timestamps) and every fill leaves an immutable Trade behind.

Status lifecycle (monotonic, never backward):
    NEW -> PARTIALLY_FILLED -> FILLED
    NEW -> FILLED
    NEW | PARTIALLY_FILLED -> CANCELLED
    NEW -> REJECTED

Positions are keyed by (base_asset, symbol, venue, strategy_id): the same
instrument held by two strategies nets separately.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

# Quote currencies stripped when deriving a base asset from a symbol
QUOTE_SUFFIXES = ("USDT", "USDC", "BUSD", "USD")

SPOT_VENUE = "SPOT"


class ValidationError(ValueError):
    """Raised when an order request or fill is malformed."""
    pass


class Side(Enum):
    """Position / order direction."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        """+1 for LONG, -1 for SHORT."""
        return 1 if self is Side.LONG else -1

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class TimeInForce(Enum):
    GTC = "GTC"   # Good till cancelled
    IOC = "IOC"   # Immediate or cancel
    FOK = "FOK"   # Fill or kill


class OrderStatus(Enum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_open(self) -> bool:
        """True while the order can still fill or be cancelled."""
        return self in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED)


# Legal forward transitions
_TRANSITIONS = {
    OrderStatus.NEW: {
        OrderStatus.PARTIALLY_FILLED,
        OrderStatus.FILLED,
        OrderStatus.CANCELLED,
        OrderStatus.REJECTED,
    },
    OrderStatus.PARTIALLY_FILLED: {
        OrderStatus.PARTIALLY_FILLED,
        OrderStatus.FILLED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.FILLED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REJECTED: set(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """True if current -> new is a legal status move."""
    return new in _TRANSITIONS[current]


def base_asset_of(symbol: str) -> str:
    """
    Derive the base asset from an instrument symbol.

    "BTCUSDT" -> "BTC", "ETHUSDT_250328" -> "ETH", "SOL-USD" -> "SOL"
    """
    root = symbol.split("_")[0].split("-")[0].upper()
    for quote in QUOTE_SUFFIXES:
        if root.endswith(quote) and len(root) > len(quote):
            return root[: -len(quote)]
    return root


def spot_symbol_for(base_asset: str) -> str:
    """Spot reference symbol for a base asset ("BTC" -> "BTCUSDT")."""
    return f"{base_asset}USDT"


class PositionKey(NamedTuple):
    """Netting key for positions."""
    base_asset: str
    symbol: str
    venue: str
    strategy_id: Optional[str]


@dataclass
class OrderRequest:
    """
    Input to the ledger - what order are we placing?

    arrival_price is the mid at submission; it prices MARKET fills and is the
    reference for slippage. The desk fills it from the price cache when the
    caller leaves it out.
    """
    symbol: str
    venue: str
    side: Side
    quantity: Decimal
    order_type: OrderType = OrderType.MARKET
    price: Optional[Decimal] = None           # Required for LIMIT
    time_in_force: TimeInForce = TimeInForce.GTC
    arrival_price: Optional[Decimal] = None
    strategy_id: Optional[str] = None
    trader_id: Optional[str] = None
    base_asset: Optional[str] = None          # Derived from symbol when None
    client_order_id: Optional[str] = None

    @property
    def base(self) -> str:
        return self.base_asset or base_asset_of(self.symbol)

    @property
    def position_key(self) -> PositionKey:
        return PositionKey(self.base, self.symbol, self.venue, self.strategy_id)

    @property
    def reference_price(self) -> Optional[Decimal]:
        """Price used for notional sizing: limit price for LIMIT, arrival otherwise."""
        if self.order_type == OrderType.LIMIT and self.price is not None:
            return self.price
        return self.arrival_price

    def validate(self) -> None:
        """
        Fail fast on malformed requests.

        Raises:
            ValidationError: qty <= 0, missing LIMIT price, non-positive prices
        """
        if not self.symbol:
            raise ValidationError("symbol is required")
        if not self.venue:
            raise ValidationError("venue is required")
        if not isinstance(self.side, Side):
            raise ValidationError(f"side must be Side, got {self.side!r}")
        if self.quantity is None or self.quantity <= 0:
            raise ValidationError(f"quantity must be > 0, got {self.quantity}")
        if self.order_type == OrderType.LIMIT:
            if self.price is None:
                raise ValidationError("LIMIT order requires a price")
            if self.price <= 0:
                raise ValidationError(f"price must be > 0, got {self.price}")
        if self.order_type == OrderType.MARKET and self.arrival_price is None:
            raise ValidationError(
                f"MARKET order for {self.symbol} has no arrival price "
                f"(no market data yet)"
            )
        if self.arrival_price is not None and self.arrival_price <= 0:
            raise ValidationError(f"arrival_price must be > 0, got {self.arrival_price}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "venue": self.venue,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "order_type": self.order_type.value,
            "price": str(self.price) if self.price is not None else None,
            "time_in_force": self.time_in_force.value,
            "arrival_price": str(self.arrival_price) if self.arrival_price is not None else None,
            "strategy_id": self.strategy_id,
            "trader_id": self.trader_id,
            "base_asset": self.base,
            "client_order_id": self.client_order_id,
        }


@dataclass
class Order:
    """An order owned by the execution ledger. Consumers only see copies."""
    order_id: str
    symbol: str
    base_asset: str
    venue: str
    side: Side
    requested_qty: Decimal
    order_type: OrderType
    time_in_force: TimeInForce
    submitted_at: datetime
    price: Optional[Decimal] = None
    arrival_price: Optional[Decimal] = None
    status: OrderStatus = OrderStatus.NEW
    filled_qty: Decimal = Decimal("0")
    avg_fill_price: Optional[Decimal] = None
    strategy_id: Optional[str] = None
    trader_id: Optional[str] = None
    client_order_id: Optional[str] = None
    first_fill_at: Optional[datetime] = None
    full_fill_at: Optional[datetime] = None
    status_reason: Optional[str] = None

    @property
    def remaining_qty(self) -> Decimal:
        return self.requested_qty - self.filled_qty

    @property
    def position_key(self) -> PositionKey:
        return PositionKey(self.base_asset, self.symbol, self.venue, self.strategy_id)

    @property
    def slippage_pct(self) -> Optional[float]:
        """Fill vs arrival in percent, positive = worse than arrival for either side."""
        if self.avg_fill_price is None or not self.arrival_price:
            return None
        slippage = (self.avg_fill_price - self.arrival_price) * self.side.sign
        return float(slippage / self.arrival_price * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "base_asset": self.base_asset,
            "venue": self.venue,
            "side": self.side.value,
            "requested_qty": str(self.requested_qty),
            "order_type": self.order_type.value,
            "time_in_force": self.time_in_force.value,
            "price": str(self.price) if self.price is not None else None,
            "arrival_price": str(self.arrival_price) if self.arrival_price is not None else None,
            "status": self.status.value,
            "filled_qty": str(self.filled_qty),
            "avg_fill_price": str(self.avg_fill_price) if self.avg_fill_price is not None else None,
            "strategy_id": self.strategy_id,
            "trader_id": self.trader_id,
            "client_order_id": self.client_order_id,
            "submitted_at": self.submitted_at.isoformat(),
            "first_fill_at": self.first_fill_at.isoformat() if self.first_fill_at else None,
            "full_fill_at": self.full_fill_at.isoformat() if self.full_fill_at else None,
            "status_reason": self.status_reason,
        }


@dataclass(frozen=True)
class Trade:
    """Immutable fill record. Only the ledger's fill routine creates these."""
    trade_id: str
    order_id: str
    symbol: str
    venue: str
    side: Side
    price: Decimal
    quantity: Decimal
    timestamp: datetime
    strategy_id: Optional[str] = None
    trader_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "order_id": self.order_id,
            "symbol": self.symbol,
            "venue": self.venue,
            "side": self.side.value,
            "price": str(self.price),
            "quantity": str(self.quantity),
            "timestamp": self.timestamp.isoformat(),
            "strategy_id": self.strategy_id,
            "trader_id": self.trader_id,
        }


@dataclass
class Position:
    """
    Net position for one key. quantity is always > 0; a flat position is
    removed from the ledger rather than kept as a zero row.
    """
    position_id: str
    base_asset: str
    symbol: str
    venue: str
    side: Side
    quantity: Decimal
    avg_entry_price: Decimal
    created_at: datetime
    strategy_id: Optional[str] = None
    trader_id: Optional[str] = None

    @property
    def key(self) -> PositionKey:
        return PositionKey(self.base_asset, self.symbol, self.venue, self.strategy_id)

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.side.sign

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "base_asset": self.base_asset,
            "symbol": self.symbol,
            "venue": self.venue,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "avg_entry_price": str(self.avg_entry_price),
            "created_at": self.created_at.isoformat(),
            "strategy_id": self.strategy_id,
            "trader_id": self.trader_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Build a position from a config/seed dict."""
        symbol = data["symbol"]
        created = data.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created)
        return cls(
            position_id=str(data.get("position_id") or data.get("id") or ""),
            base_asset=data.get("base_asset") or base_asset_of(symbol),
            symbol=symbol,
            venue=data["venue"],
            side=Side(str(data["side"]).upper()),
            quantity=Decimal(str(data["quantity"])),
            avg_entry_price=Decimal(str(data["avg_entry_price"])),
            created_at=created or datetime.utcnow(),
            strategy_id=data.get("strategy_id"),
            trader_id=data.get("trader_id"),
        )


@dataclass(frozen=True)
class Fill:
    """A fill to be netted into the position book."""
    base_asset: str
    symbol: str
    venue: str
    side: Side
    quantity: Decimal
    price: Decimal
    strategy_id: Optional[str] = None
    trader_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def key(self) -> PositionKey:
        return PositionKey(self.base_asset, self.symbol, self.venue, self.strategy_id)
