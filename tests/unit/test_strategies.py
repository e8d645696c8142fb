"""
Tests for the strategy registry and its order-state check.
"""

import pytest

from deskrisk.audit import AuditKind
from deskrisk.risk import RiskCheckName, StrategyInstance, StrategyRegistry, StrategyState


class TestStrategyRegistry:
    @pytest.fixture
    def registry(self, audit):
        return StrategyRegistry([
            StrategyInstance("ARB_DELTA_NEUTRAL", "Basis Arb", "ARBITRAGE", "ALICE"),
            StrategyInstance("TREND_FOLLOW", "Trend V2", "DIRECTIONAL", "BOB",
                             state=StrategyState.PAUSED),
        ], audit=audit)

    @pytest.mark.parametrize("state,reduces_risk,allowed", [
        (StrategyState.RUNNING, False, True),
        (StrategyState.RUNNING, True, True),
        (StrategyState.DRAINING, False, False),
        (StrategyState.DRAINING, True, True),
        (StrategyState.PAUSED, False, False),
        (StrategyState.PAUSED, True, False),
        (StrategyState.ERROR, True, False),
    ])
    def test_check_order_by_state(self, registry, state, reduces_risk, allowed):
        registry.update_state("ARB_DELTA_NEUTRAL", state, user="ALICE", reason="test")
        check = registry.check_order("ARB_DELTA_NEUTRAL", reduces_risk=reduces_risk)

        assert check.name == RiskCheckName.STRATEGY_STATE
        assert check.passed is allowed
        assert check.actual == state.value

    def test_draining_reason(self, registry):
        registry.update_state("ARB_DELTA_NEUTRAL", StrategyState.DRAINING, user="ALICE", reason="eod")
        check = registry.check_order("ARB_DELTA_NEUTRAL", reduces_risk=False)
        assert "only risk-reducing" in check.reason

    def test_unregistered_strategy_unconstrained(self, registry):
        assert registry.check_order("MANUAL", reduces_risk=False).passed
        assert registry.check_order(None, reduces_risk=False).passed

    def test_state_change_logged_and_audited(self, registry, audit):
        change = registry.update_state("TREND_FOLLOW", StrategyState.RUNNING,
                                       user="BOB", reason="reject rate normal")

        assert change.old_state == StrategyState.PAUSED
        assert change.new_state == StrategyState.RUNNING
        assert registry.get("TREND_FOLLOW").state == StrategyState.RUNNING
        assert registry.get_log() == (change,)

        entry = audit.entries(kind=AuditKind.COMMAND)[-1]
        assert "TREND_FOLLOW transitioned PAUSED -> RUNNING" in entry.message
        assert entry.user == "BOB"

    def test_unknown_strategy_update_raises(self, registry):
        with pytest.raises(KeyError):
            registry.update_state("NOPE", StrategyState.PAUSED, user="u", reason="r")
        with pytest.raises(KeyError):
            registry.update_param("NOPE", "max_pos", "1", user="u", reason="r")

    def test_update_param_logged(self, registry):
        change = registry.update_param("ARB_DELTA_NEUTRAL", "target_gross", "4000000",
                                       user="ALICE", reason="scale down")
        assert change.action == "PARAM_CHANGE: target_gross=4000000"
        assert change.old_state is None

    def test_reads_are_copies(self, registry):
        strategy = registry.get("ARB_DELTA_NEUTRAL")
        strategy.state = StrategyState.ERROR
        assert registry.get("ARB_DELTA_NEUTRAL").state == StrategyState.RUNNING

    def test_from_dict(self):
        registry = StrategyRegistry.from_dict({"strategies": [
            {"id": "ETH_FUTURES_HEDGE", "name": "ETH Dated Hedge", "state": "draining",
             "instruments": ["ETHUSDT_250328"]},
        ]})
        strategy = registry.get("ETH_FUTURES_HEDGE")

        assert strategy.state == StrategyState.DRAINING
        assert strategy.instruments == ("ETHUSDT_250328",)
        assert strategy.owner == "HOUSE"
        assert StrategyRegistry.from_dict({}).get_all() == []
