"""
Portfolio Valuator - marks the position book to market on a fixed cadence

Each tick:
1. Snapshot the ledger positions (copies, the ledger is never touched)
2. Resolve a mark per position:
   - SPOT venue:        mid of best bid/ask on "{base}USDT"
   - derivative venues: mark price stream of the position's own symbol
   - no usable price:   avg_entry_price, flagged stale (missing or non-finite)
3. Build LivePositions and group them by base asset
4. Desk RiskMetrics: equity = wallet balances + unrealized PnL,
   leverage = gross / equity (0 when equity <= 0)
5. Carry per base asset: basis in bps and annualised funding

The snapshot is computed in full before it replaces the previous one. If a
tick fails the previous snapshot stays published and the next tick retries.

Funding APR assumes funding_events_per_day settlements (3 = every 8 hours, as
on the major USDT-margined perpetual venues). That is a modelling choice, not
a property of every venue, so it is configurable.
"""

import asyncio
import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..execution.ledger import ExecutionLedger
from ..execution.schema import SPOT_VENUE, Position, spot_symbol_for
from ..market.price_cache import PriceCache, PriceQuote
from .accounts import AccountRegistry
from .schema import (
    ZERO,
    CarryMetric,
    LivePosition,
    PortfolioGroup,
    PortfolioSnapshot,
    RiskMetrics,
)

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[PortfolioSnapshot], None]

BPS = Decimal("10000")
DAYS_PER_YEAR = 365


def resolve_mark(position: Position, quotes: Mapping[str, PriceQuote]) -> Optional[Decimal]:
    """Live price for a position, None when the feed has not delivered one yet."""
    if position.venue == SPOT_VENUE:
        quote = quotes.get(spot_symbol_for(position.base_asset))
        price = quote.mid if quote else None
    else:
        quote = quotes.get(position.symbol)
        price = quote.mark if quote else None

    if price is None or not price.is_finite() or price <= 0:
        return None
    return price


def compute_leverage(gross_exposure: Decimal, total_equity: Decimal) -> Decimal:
    """Gross / equity; defined as 0 when equity is zero or negative."""
    if total_equity <= 0:
        return ZERO
    return gross_exposure / total_equity


class PortfolioValuator:
    """
    Turns ledger positions + price cache into published PortfolioSnapshots.

    Usage:
        valuator = PortfolioValuator(ledger, prices, accounts, interval_seconds=0.25)
        snapshot = valuator.tick()          # one synchronous valuation
        valuator.subscribe(on_snapshot)     # push-style consumers
        await valuator.run(stop_event)      # periodic task
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        prices: PriceCache,
        accounts: AccountRegistry,
        interval_seconds: float = 0.25,
        funding_events_per_day: int = 3,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        if funding_events_per_day <= 0:
            raise ValueError(
                f"funding_events_per_day must be > 0, got {funding_events_per_day}"
            )

        self.ledger = ledger
        self.prices = prices
        self.accounts = accounts
        self.interval_seconds = interval_seconds
        self.funding_events_per_day = funding_events_per_day

        self._lock = threading.Lock()
        self._snapshot = PortfolioSnapshot.empty()
        self._listeners: List[SnapshotListener] = []
        self._stale_symbols: Set[str] = set()
        self._tick_count = 0
        self._failed_ticks = 0

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def mark_positions(
        self,
        positions: Iterable[Position],
        quotes: Optional[Mapping[str, PriceQuote]] = None
    ) -> List[LivePosition]:
        """Value positions against the given quotes (the live cache when None), publishing nothing."""
        if quotes is None:
            quotes = self.prices.snapshot()
        return [LivePosition.from_position(p, resolve_mark(p, quotes)) for p in positions]

    def value(
        self,
        positions: Iterable[Position],
        quotes: Mapping[str, PriceQuote],
        wallet_balance: Decimal,
        realized_pnl: Decimal = ZERO,
        version: int = 0,
        ledger_version: int = 0,
    ) -> PortfolioSnapshot:
        """Pure valuation of a position set against a quote set."""
        live = self.mark_positions(positions, quotes)

        by_base: Dict[str, List[LivePosition]] = {}
        for position in live:
            by_base.setdefault(position.base_asset, []).append(position)

        groups = tuple(
            PortfolioGroup.from_positions(base, tuple(members))
            for base, members in by_base.items()
        )

        total_pnl = sum((p.unrealized_pnl for p in live), ZERO)
        long_exposure = sum((p.notional_usd for p in live if p.side.sign > 0), ZERO)
        short_exposure = sum((p.notional_usd for p in live if p.side.sign < 0), ZERO)
        total_equity = wallet_balance + total_pnl

        metrics = RiskMetrics(
            wallet_balance=wallet_balance,
            total_equity=total_equity,
            total_pnl=total_pnl,
            realized_pnl=realized_pnl,
            net_delta_usd=long_exposure - short_exposure,
            long_exposure=long_exposure,
            short_exposure=short_exposure,
            leverage=compute_leverage(long_exposure + short_exposure, total_equity),
            stale_positions=sum(1 for p in live if p.is_stale),
        )

        return PortfolioSnapshot(
            version=version,
            as_of=datetime.utcnow(),
            positions=tuple(live),
            groups=groups,
            metrics=metrics,
            carry=self._carry(by_base.keys(), quotes),
            ledger_version=ledger_version,
            stale_symbols=frozenset(p.symbol for p in live if p.is_stale),
        )

    def _carry(
        self,
        base_assets: Iterable[str],
        quotes: Mapping[str, PriceQuote]
    ) -> Tuple[CarryMetric, ...]:
        carry: List[CarryMetric] = []
        for base in base_assets:
            quote = quotes.get(spot_symbol_for(base))
            if quote is None:
                continue
            spot = quote.mid
            mark = quote.mark
            if not spot or not mark:
                continue

            funding = quote.funding_rate or ZERO
            carry.append(CarryMetric(
                base_asset=base,
                spot_price=spot,
                perp_price=mark,
                basis_bps=(mark - spot) / spot * BPS,
                funding_rate=funding,
                funding_apr=funding * self.funding_events_per_day * DAYS_PER_YEAR * 100,
            ))
        return tuple(carry)

    def tick(self) -> PortfolioSnapshot:
        """
        Run one valuation and publish it.

        Returns:
            The newly published snapshot, or the previous one if the tick failed
        """
        self._tick_count += 1
        try:
            ledger_version = self.ledger.version
            snapshot = self.value(
                positions=self.ledger.get_positions(),
                quotes=self.prices.snapshot(),
                wallet_balance=self.accounts.total_wallet_balance(),
                realized_pnl=self.ledger.realized_pnl,
                version=self._snapshot.version + 1,
                ledger_version=ledger_version,
            )
        except Exception as e:
            self._failed_ticks += 1
            logger.error(
                f"Valuation tick {self._tick_count} failed, keeping snapshot "
                f"v{self._snapshot.version}: {e}",
                exc_info=True
            )
            return self._snapshot

        self._report_staleness(snapshot.stale_symbols)
        self._publish(snapshot)
        return snapshot

    async def run(self, stop: asyncio.Event) -> None:
        """Periodic valuation until stop is set."""
        logger.info(f"Valuator starting (interval={self.interval_seconds}s)")
        while not stop.is_set():
            self.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Valuator stopped after {self._tick_count} ticks")

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _publish(self, snapshot: PortfolioSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}", exc_info=True)

    def _report_staleness(self, stale: frozenset) -> None:
        for symbol in sorted(stale - self._stale_symbols):
            logger.warning(f"No live price for {symbol}, valuing at entry price (stale)")
        for symbol in sorted(self._stale_symbols - stale):
            logger.info(f"Live price restored for {symbol}")
        self._stale_symbols = set(stale)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> PortfolioSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> int:
        return self.snapshot.version

    @property
    def failed_ticks(self) -> int:
        return self._failed_ticks

    def get_positions(self) -> List[LivePosition]:
        return list(self.snapshot.positions)

    def get_groups(self) -> List[PortfolioGroup]:
        return list(self.snapshot.groups)

    def get_metrics(self) -> RiskMetrics:
        return self.snapshot.metrics

    def get_carry(self) -> List[CarryMetric]:
        return list(self.snapshot.carry)
