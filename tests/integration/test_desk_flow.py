"""
End-to-end desk flow: order path through strategy state, pre-trade gate and
ledger, then valuation, risk tree and shocks on the resulting book.
"""

import asyncio
from decimal import Decimal
from pathlib import Path

import pytest

from deskrisk import DeskConfig, DeskContext
from deskrisk.audit import AuditKind
from deskrisk.demo import build_demo_desk, seed_positions, seed_prices
from deskrisk.execution import (
    OrderRequest,
    OrderStatus,
    OrderType,
    PositionKey,
    Side,
    ValidationError,
)
from deskrisk.risk import LimitType, RiskCheckName, StrategyState

REPO_CONFIG = Path(__file__).parent.parent.parent / "config.yaml"


def order(symbol="BTCUSDT", venue="SPOT", side=Side.LONG, qty="0.5",
          strategy_id="ARB_DELTA_NEUTRAL", trader_id="ALICE", **kwargs):
    return OrderRequest(
        symbol=symbol,
        venue=venue,
        side=side,
        quantity=Decimal(qty),
        strategy_id=strategy_id,
        trader_id=trader_id,
        **kwargs
    )


def position(desk, symbol, venue, strategy_id):
    base = symbol[:3]
    return desk.ledger.get_position(PositionKey(base, symbol, venue, strategy_id))


def gross(positions):
    return sum((p.notional_usd for p in positions), Decimal("0"))


class TestOrderPath:
    def test_accepted_order_fills_and_revalues(self, desk):
        submission = desk.submit_order(order(), user="ALICE")

        assert submission.accepted
        assert submission.warning is None
        assert submission.order.status == OrderStatus.FILLED
        assert submission.order.arrival_price == Decimal("97200")
        assert position(desk, "BTCUSDT", "SPOT", "ARB_DELTA_NEUTRAL").quantity == Decimal("25.5")

        snapshot, tree = desk.tick()
        assert snapshot.metrics.long_exposure == Decimal("4157000") + Decimal("48600")
        assert tree.find("ARB_DELTA_NEUTRAL-ALICE-BTC-SPOT").position_count == 1

    def test_derivative_arrival_uses_mark(self, desk):
        assert desk.arrival_price("BTCUSDT", "PERP_USDT") == Decimal("97260")
        assert desk.arrival_price("BTCUSDT", "SPOT") == Decimal("97200")
        assert desk.arrival_price("DOGEUSDT", "PERP_USDT") is None

    def test_paused_strategy_refused_before_ledger(self, desk):
        submission = desk.submit_order(
            order(symbol="ETHUSDT", venue="PERP_USDT", side=Side.SHORT, qty="1",
                  strategy_id="TREND_FOLLOW", trader_id="BOB")
        )

        assert not submission.accepted
        assert submission.check.first_failure.name == RiskCheckName.STRATEGY_STATE
        assert desk.get_orders() == []

        refusal = desk.get_audit_log(kind=AuditKind.RISK)[-1]
        assert "Order refused" in refusal.message
        assert refusal.payload["check"] == "strategy_state"

    def test_hard_symbol_limit_refused(self, desk):
        submission = desk.submit_order(
            order(venue="PERP_USDT", side=Side.SHORT, qty="40", strategy_id="MANUAL",
                  trader_id="CAROL")
        )

        assert not submission.accepted
        assert submission.check.hard_block
        assert submission.check.first_failure.name == RiskCheckName.SYMBOL_LIMIT
        assert submission.check.checks[0].name == RiskCheckName.STRATEGY_STATE
        assert desk.get_orders() == []

    def test_blocked_pair_refused_even_when_running(self, desk):
        desk.update_strategy_state("TREND_FOLLOW", StrategyState.RUNNING, user="BOB", reason="resume")
        submission = desk.submit_order(
            order(symbol="SOLUSDT", venue="PERP_USDT", side=Side.SHORT, qty="10",
                  strategy_id="TREND_FOLLOW", trader_id="BOB")
        )

        assert not submission.accepted
        assert submission.check.first_failure.name == RiskCheckName.BLOCK_LIST

    def test_soft_limit_accepted_with_warning(self, desk):
        desk.update_strategy_state("TREND_FOLLOW", StrategyState.RUNNING, user="BOB", reason="resume")
        submission = desk.submit_order(
            order(symbol="ETHUSDT", venue="PERP_USDT", side=Side.SHORT, qty="10",
                  strategy_id="TREND_FOLLOW", trader_id="BOB")
        )

        assert submission.accepted
        assert submission.warning is not None
        assert submission.check.first_failure.name == RiskCheckName.STRATEGY_LIMIT
        assert submission.order.status == OrderStatus.FILLED

    def test_draining_allows_only_reductions(self, desk):
        desk.update_strategy_state("ARB_DELTA_NEUTRAL", StrategyState.DRAINING,
                                   user="ALICE", reason="flatten into close")

        adding = desk.submit_order(order(qty="1"))
        assert not adding.accepted
        assert adding.check.first_failure.name == RiskCheckName.STRATEGY_STATE

        reducing = desk.submit_order(order(side=Side.SHORT, qty="5"))
        assert reducing.accepted
        assert position(desk, "BTCUSDT", "SPOT", "ARB_DELTA_NEUTRAL").quantity == Decimal("20")

    def test_flip_is_sized_on_the_excess_only(self, desk):
        desk.update_limit("ARB_DELTA_NEUTRAL", Decimal("6100000"), user="risk", reason="tight")

        # 25 BTC long: selling 25.1 adds only 0.1 BTC (~9,720 USD) of new exposure
        submission = desk.submit_order(order(side=Side.SHORT, qty="25.1"))

        assert submission.accepted
        flipped = position(desk, "BTCUSDT", "SPOT", "ARB_DELTA_NEUTRAL")
        assert flipped.side == Side.SHORT
        assert flipped.quantity == Decimal("0.1")

    def test_limit_order_sized_at_limit_price(self, desk):
        submission = desk.submit_order(
            order(qty="1", order_type=OrderType.LIMIT, price=Decimal("90000"))
        )

        assert submission.accepted
        assert submission.order.status == OrderStatus.NEW
        strategy_check = next(
            c for c in submission.check.checks if c.name == RiskCheckName.STRATEGY_LIMIT
        )
        assert Decimal(strategy_check.details["candidate_usd"]) == Decimal("90000")

        assert desk.cancel_order(submission.order.order_id, user="ALICE", reason="done")
        assert not desk.cancel_order(submission.order.order_id)

    def test_market_order_without_price_rejected(self, desk):
        with pytest.raises(ValidationError):
            desk.submit_order(order(symbol="DOGEUSDT", venue="PERP_USDT", strategy_id="MANUAL"))
        assert desk.get_orders() == []


class TestExposureBetweenTicks:
    def test_back_to_back_orders_see_earlier_fills(self, desk):
        # No tick between orders: each fill must count against the next check
        results = [
            desk.submit_order(order(venue="PERP_USDT", side=Side.SHORT, qty="5"))
            for _ in range(40)
        ]

        accepted = [r for r in results if r.accepted]
        assert len(accepted) == 1
        assert results[1].check.first_failure.name == RiskCheckName.TRADER_LIMIT
        assert Decimal(results[1].check.details["current_gross_usd"]) == Decimal("6565950")

        _, tree = desk.tick()
        assert not tree.is_breached
        assert all(not node.is_hard_limit for node in tree.breached_nodes())

    def test_resting_limit_orders_count_as_exposure(self, desk):
        resting = desk.submit_order(
            order(qty="10", order_type=OrderType.LIMIT, price=Decimal("90000"))
        )
        assert resting.accepted
        assert resting.order.status == OrderStatus.NEW

        refused = desk.submit_order(
            order(qty="1", order_type=OrderType.LIMIT, price=Decimal("90000"))
        )
        assert not refused.accepted
        assert refused.check.first_failure.name == RiskCheckName.TRADER_LIMIT
        assert Decimal(refused.check.details["current_gross_usd"]) == Decimal("6979650")

        desk.cancel_order(resting.order.order_id, user="ALICE", reason="replace")
        retry = desk.submit_order(
            order(qty="1", order_type=OrderType.LIMIT, price=Decimal("90000"))
        )
        assert retry.accepted
        assert retry.warning is None

    def test_gate_exposure_values_the_ledger_now(self, desk):
        desk.submit_order(order(qty="1"))

        published = desk.get_live_positions()
        current = desk.gate_exposure()

        assert gross(current) - gross(published) == Decimal("97200")


class TestRiskAdministration:
    def test_limit_override_rebuilds_tree(self, desk):
        assert not desk.get_tree().is_breached

        override = desk.update_limit("MAIN_DESK", Decimal("8000000"), user="risk_officer",
                                     reason="desk de-risk")

        assert desk.get_tree().is_breached
        assert desk.get_override_log() == (override,)
        assert desk.limits.limit(LimitType.DESK, "MAIN_DESK") == Decimal("8000000")

    def test_account_balance_changes_equity(self, desk):
        desk.set_account_balance("PROP_DESK_MAIN", Decimal("0"), user="treasury")
        snapshot, _ = desk.tick()

        assert snapshot.metrics.wallet_balance == Decimal("1000000")
        assert desk.get_audit_log(kind=AuditKind.ACCOUNT)[-1].user == "treasury"

    def test_status(self, desk):
        status = desk.get_status()

        assert status["desk_id"] == "MAIN_DESK"
        assert status["positions"] == 7
        assert status["breaches"] == ["TREND_FOLLOW"]
        assert status["running"] is False


class TestShocks:
    def test_run_shock_by_id(self, desk):
        result = desk.run_shock("btc_crash")
        assert result.shock_delta_pnl == Decimal("150")

    def test_unknown_scenario(self, desk):
        with pytest.raises(KeyError):
            desk.run_shock("meteor_strike")

    def test_shock_reads_last_valuation(self, desk):
        desk.submit_order(order(qty="1"))
        before = desk.run_shock("alt_bloodbath")

        desk.tick()
        after = desk.run_shock("alt_bloodbath")

        assert after.current_gross > before.current_gross


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_with_delayed_fills(self):
        desk = build_demo_desk(DeskConfig(
            fill_delay_seconds=0.05,
            valuation_interval_seconds=0.02,
            risk_interval_seconds=0.02,
            slippage_seed=1,
        ))
        runner = asyncio.create_task(desk.run())
        await asyncio.sleep(0.05)

        submission = desk.submit_order(order(qty="1"))
        assert submission.accepted
        assert submission.order.status == OrderStatus.NEW

        await asyncio.sleep(0.2)
        assert desk.get_orders()[0].status == OrderStatus.FILLED
        spot = next(p for p in desk.get_live_positions()
                    if p.symbol == "BTCUSDT" and p.venue == "SPOT")
        assert spot.quantity == Decimal("26")
        assert desk.get_tree() is not None

        desk.shutdown()
        await asyncio.wait_for(runner, timeout=1)
        assert desk.get_status()["running"] is False
        desk.close()

    @pytest.mark.asyncio
    async def test_shutdown_before_run(self):
        desk = build_demo_desk(DeskConfig(fill_delay_seconds=0))
        desk.shutdown()
        await asyncio.wait_for(desk.run(), timeout=1)

    def test_from_yaml(self):
        desk = DeskContext.from_yaml(str(REPO_CONFIG), seed_positions=seed_positions())
        seed_prices(desk.prices)
        _, tree = desk.tick()

        assert tree.limit_usd == Decimal("10000000")
        assert desk.strategies.get("TREND_FOLLOW").state == StrategyState.PAUSED
        assert desk.limits.is_blocked("TREND_FOLLOW", "SOLUSDT")
        assert "eth_basis_blowout" in desk.scenarios
        assert desk.get_metrics().wallet_balance == Decimal("2000000")
        desk.close()
