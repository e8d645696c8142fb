# Market Module
# Latest bid/ask/mark/funding per instrument, fed by external market-data collaborators

from .price_cache import PriceCache, PriceQuote, to_decimal

__all__ = [
    "PriceCache",
    "PriceQuote",
    "to_decimal",
]
