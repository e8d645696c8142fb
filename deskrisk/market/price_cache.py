"""
Price Cache - latest market state per instrument

Market-data collaborators push updates here; the valuator and the order path
read from it. A single quote per symbol carries both the spot book top
(bid/ask) and the derivative stream (mark/funding), because the feeds for
"BTCUSDT" spot and "BTCUSDT" perpetual share the same symbol.

Updates merge: fields left as None keep their previous value, and so do
non-finite values (NaN, Infinity), which are dropped with a warning.
Updates never wait on readers beyond a short dict copy.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert str/float/int to Decimal, None stays None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PriceQuote:
    """Latest known prices for one symbol."""
    symbol: str
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    mark: Optional[Decimal] = None
    funding_rate: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

    @property
    def mid(self) -> Optional[Decimal]:
        """Mid of best bid/ask, None unless both sides are known."""
        if self.bid is None or self.ask is None:
            return None
        return (self.bid + self.ask) / 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bid": str(self.bid) if self.bid is not None else None,
            "ask": str(self.ask) if self.ask is not None else None,
            "mark": str(self.mark) if self.mark is not None else None,
            "funding_rate": str(self.funding_rate) if self.funding_rate is not None else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class PriceCache:
    """
    Thread-safe store of the latest quote per symbol.

    Usage:
        cache = PriceCache()
        cache.update("BTCUSDT", bid=96490, ask=96510)
        cache.update("BTCUSDT", mark=96520, funding_rate=0.0001)

        cache.mid("BTCUSDT")   # Decimal("96500")
        cache.mark("BTCUSDT")  # Decimal("96520")
    """

    def __init__(self):
        self._quotes: Dict[str, PriceQuote] = {}
        self._lock = threading.Lock()
        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every update."""
        return self._version

    def update(
        self,
        symbol: str,
        bid: Any = None,
        ask: Any = None,
        mark: Any = None,
        funding_rate: Any = None
    ) -> PriceQuote:
        """
        Merge a partial update into the quote for symbol.

        Returns:
            The merged quote
        """
        changes: Dict[str, Any] = {"updated_at": datetime.utcnow()}
        for name, value in (
            ("bid", bid), ("ask", ask), ("mark", mark), ("funding_rate", funding_rate)
        ):
            if value is None:
                continue
            value = to_decimal(value)
            if not value.is_finite():
                logger.warning(f"Ignoring non-finite {name} for {symbol}: {value}")
                continue
            changes[name] = value

        with self._lock:
            current = self._quotes.get(symbol) or PriceQuote(symbol=symbol)
            merged = replace(current, **changes)
            self._quotes[symbol] = merged
            self._version += 1
        return merged

    def get(self, symbol: str) -> Optional[PriceQuote]:
        with self._lock:
            return self._quotes.get(symbol)

    def mid(self, symbol: str) -> Optional[Decimal]:
        quote = self.get(symbol)
        return quote.mid if quote else None

    def mark(self, symbol: str) -> Optional[Decimal]:
        quote = self.get(symbol)
        return quote.mark if quote else None

    def funding_rate(self, symbol: str) -> Optional[Decimal]:
        quote = self.get(symbol)
        return quote.funding_rate if quote else None

    def snapshot(self) -> Dict[str, PriceQuote]:
        """Copy of all quotes. Quotes are immutable so a shallow copy suffices."""
        with self._lock:
            return dict(self._quotes)

    def clear(self) -> None:
        with self._lock:
            self._quotes.clear()
            self._version += 1
