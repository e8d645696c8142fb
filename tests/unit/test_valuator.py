"""
Tests for the portfolio valuator.

Demo book at demo prices (SPOT marks are the spot mid, derivatives the mark):

    BTC SPOT  LONG  25   @ 96500  mark 97200  notional 2,430,000  pnl  17,500
    BTC PERP  SHORT 25   @ 96800  mark 97260  notional 2,431,500  pnl -11,500
    ETH SPOT  LONG  300  @ 2650   mark 2690   notional   807,000  pnl  12,000
    ETH PERP  SHORT 150  @ 2680   mark 2694   notional   404,100  pnl  -2,100
    ETH FUT   SHORT 150  @ 2750   mark 2741   notional   411,150  pnl   1,350
    SOL SPOT  LONG  5000 @ 180    mark 184    notional   920,000  pnl  20,000
    SOL PERP  SHORT 5000 @ 182    mark 184.2  notional   921,000  pnl -11,000
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from deskrisk.demo import seed_positions
from deskrisk.execution import ExecutionLedger
from deskrisk.market import PriceCache, PriceQuote
from deskrisk.portfolio import (
    AccountRegistry,
    PortfolioValuator,
    compute_leverage,
    resolve_mark,
)


class TestResolveMark:
    @pytest.fixture
    def positions(self):
        return {p.position_id: p for p in seed_positions()}

    def test_spot_uses_spot_mid(self, positions, prices):
        assert resolve_mark(positions["1"], prices.snapshot()) == Decimal("97200")

    def test_perp_uses_mark(self, positions, prices):
        assert resolve_mark(positions["2"], prices.snapshot()) == Decimal("97260")

    def test_dated_future_uses_own_symbol(self, positions, prices):
        assert resolve_mark(positions["5"], prices.snapshot()) == Decimal("2741")

    def test_missing_price(self, positions):
        assert resolve_mark(positions["1"], {}) is None

    @pytest.mark.parametrize("bad", ["NaN", "Infinity", "-Infinity"])
    def test_unusable_price_treated_as_missing(self, positions, bad):
        quotes = {"BTCUSDT": PriceQuote("BTCUSDT", bid=Decimal(bad), ask=Decimal("97210"),
                                        mark=Decimal(bad))}

        assert resolve_mark(positions["1"], quotes) is None
        assert resolve_mark(positions["2"], quotes) is None


class TestComputeLeverage:
    def test_gross_over_equity(self):
        assert compute_leverage(Decimal("300"), Decimal("100")) == Decimal("3")

    @pytest.mark.parametrize("equity", [Decimal("0"), Decimal("-5000")])
    def test_zero_when_equity_not_positive(self, equity):
        assert compute_leverage(Decimal("1000000"), equity) == 0


class TestValuation:
    def test_live_positions(self, valuator):
        snapshot = valuator.tick()
        by_id = {p.position_id: p for p in snapshot.positions}

        assert by_id["1"].mark_price == Decimal("97200")
        assert by_id["1"].unrealized_pnl == Decimal("17500")
        assert by_id["2"].notional_usd == Decimal("2431500")
        assert by_id["2"].unrealized_pnl == Decimal("-11500")
        assert by_id["7"].unrealized_pnl == Decimal("-11000")
        assert not any(p.is_stale for p in snapshot.positions)

    def test_desk_metrics(self, valuator):
        metrics = valuator.tick().metrics

        assert metrics.long_exposure == Decimal("4157000")
        assert metrics.short_exposure == Decimal("4167750")
        assert metrics.gross_exposure == Decimal("8324750")
        assert metrics.net_delta_usd == Decimal("-10750")
        assert metrics.total_pnl == Decimal("26250")
        assert metrics.wallet_balance == Decimal("2000000")
        assert metrics.total_equity == Decimal("2026250")
        assert metrics.leverage == Decimal("8324750") / Decimal("2026250")

    def test_groups_are_delta_neutral(self, valuator):
        snapshot = valuator.tick()

        assert {g.base_asset for g in snapshot.groups} == {"BTC", "ETH", "SOL"}
        for group in snapshot.groups:
            assert group.net_delta_base == 0
        assert snapshot.group("ETH").total_pnl == Decimal("11250")

    def test_carry(self, valuator):
        carry = {c.base_asset: c for c in valuator.tick().carry}

        btc = carry["BTC"]
        assert btc.spot_price == Decimal("97200")
        assert btc.perp_price == Decimal("97260")
        assert btc.basis_bps == Decimal("60") / Decimal("97200") * 10000
        assert btc.funding_apr == Decimal("10.95")
        assert carry["SOL"].funding_apr == Decimal("-5.475")

    def test_funding_events_per_day_configurable(self, seeded_ledger, prices, accounts):
        valuator = PortfolioValuator(seeded_ledger, prices, accounts, funding_events_per_day=1)
        carry = {c.base_asset: c for c in valuator.tick().carry}
        assert carry["BTC"].funding_apr == Decimal("3.65")

    def test_empty_book(self):
        valuator = PortfolioValuator(ExecutionLedger(), PriceCache(), AccountRegistry())
        snapshot = valuator.tick()

        assert snapshot.positions == ()
        assert snapshot.metrics.gross_exposure == 0
        assert snapshot.metrics.leverage == 0
        assert snapshot.carry == ()

    def test_versions_increase(self, valuator, seeded_ledger):
        first = valuator.tick()
        second = valuator.tick()

        assert second.version == first.version + 1
        assert second.ledger_version == seeded_ledger.version


class TestStalePrices:
    @pytest.fixture
    def partial_prices(self, prices):
        cache = PriceCache()
        for symbol, quote in prices.snapshot().items():
            if symbol != "ETHUSDT_250328":
                cache.update(symbol, bid=quote.bid, ask=quote.ask, mark=quote.mark,
                             funding_rate=quote.funding_rate)
        return cache

    def test_missing_mark_falls_back_to_entry(self, seeded_ledger, partial_prices, accounts):
        valuator = PortfolioValuator(seeded_ledger, partial_prices, accounts)
        snapshot = valuator.tick()
        future = next(p for p in snapshot.positions if p.symbol == "ETHUSDT_250328")

        assert future.is_stale
        assert future.mark_price == Decimal("2750")
        assert future.unrealized_pnl == 0
        assert snapshot.metrics.stale_positions == 1
        assert snapshot.stale_symbols == frozenset({"ETHUSDT_250328"})

    def test_staleness_logged_once_and_recovery(self, seeded_ledger, partial_prices, accounts, caplog):
        valuator = PortfolioValuator(seeded_ledger, partial_prices, accounts)

        with caplog.at_level(logging.INFO, logger="deskrisk.portfolio.valuator"):
            valuator.tick()
            valuator.tick()
            partial_prices.update("ETHUSDT_250328", mark="2741")
            valuator.tick()

        assert caplog.text.count("No live price for ETHUSDT_250328") == 1
        assert "Live price restored for ETHUSDT_250328" in caplog.text

    def test_non_finite_mark_flags_only_that_position(self, valuator, prices, monkeypatch):
        first = valuator.tick()
        quotes = prices.snapshot()
        quotes["ETHUSDT"] = PriceQuote("ETHUSDT", bid=Decimal("2689.5"), ask=Decimal("2690.5"),
                                       mark=Decimal("NaN"))
        quotes["BTCUSDT"] = PriceQuote("BTCUSDT", bid=Decimal("98190"), ask=Decimal("98210"),
                                       mark=Decimal("98260"))
        monkeypatch.setattr(prices, "snapshot", lambda: quotes)

        snapshot = valuator.tick()

        assert snapshot.version == first.version + 1
        assert snapshot.stale_symbols == frozenset({"ETHUSDT"})
        eth_perp = next(p for p in snapshot.positions
                        if p.symbol == "ETHUSDT" and p.venue == "PERP_USDT")
        assert eth_perp.is_stale
        assert eth_perp.mark_price == Decimal("2680")
        btc_spot = next(p for p in snapshot.positions
                        if p.symbol == "BTCUSDT" and p.venue == "SPOT")
        assert btc_spot.mark_price == Decimal("98200")
        assert not btc_spot.is_stale


class TestPublication:
    def test_failed_tick_keeps_previous_snapshot(self, valuator, prices, monkeypatch):
        good = valuator.tick()

        def broken():
            raise RuntimeError("feed exploded")

        monkeypatch.setattr(prices, "snapshot", broken)
        result = valuator.tick()

        assert result is good
        assert valuator.snapshot is good
        assert valuator.failed_ticks == 1

    def test_listeners_notified_and_isolated(self, valuator):
        received = []

        def failing(snapshot):
            raise ValueError("listener bug")

        valuator.subscribe(failing)
        unsubscribe = valuator.subscribe(received.append)

        snapshot = valuator.tick()
        unsubscribe()
        valuator.tick()

        assert received == [snapshot]

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, valuator):
        stop = asyncio.Event()
        task = asyncio.create_task(valuator.run(stop))

        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert valuator.version >= 1
        assert len(valuator.get_positions()) == 7

    def test_invalid_interval(self, seeded_ledger, prices, accounts):
        with pytest.raises(ValueError):
            PortfolioValuator(seeded_ledger, prices, accounts, interval_seconds=0)
