"""
Tests for the pandas report frames.
"""

import pytest

from deskrisk.portfolio import POSITION_COLUMNS, exposure_by, positions_to_frame, tree_to_frame
from deskrisk.risk import RiskHierarchyBuilder
from deskrisk.shock import BTC_CRASH, ShockEngine


class TestPositionFrames:
    def test_positions_to_frame(self, live_positions):
        df = positions_to_frame(live_positions)

        assert list(df.columns) == POSITION_COLUMNS
        assert len(df) == 7
        assert df["notional_usd"].sum() == pytest.approx(8324750)
        assert df["unrealized_pnl"].sum() == pytest.approx(26250)

    def test_empty_positions(self):
        df = positions_to_frame([])
        assert df.empty
        assert list(df.columns) == POSITION_COLUMNS

    def test_exposure_by_venue(self, live_positions):
        df = exposure_by(live_positions, "venue").set_index("venue")

        assert df.loc["SPOT", "gross_usd"] == pytest.approx(4157000)
        assert df.loc["SPOT", "net_usd"] == pytest.approx(4157000)
        assert df.loc["PERP_USDT", "net_usd"] == pytest.approx(-3756600)
        assert df.index[0] == "SPOT"

    def test_exposure_by_empty(self):
        df = exposure_by([], "venue")
        assert df.empty
        assert "gross_usd" in df.columns


class TestTreeFrames:
    def test_risk_tree_frame(self, live_positions, limit_book):
        tree = RiskHierarchyBuilder(limit_book).build(live_positions, limit_book.snapshot())
        df = tree_to_frame(tree)

        assert len(df) == len(list(tree.walk()))
        root = df.iloc[0]
        assert root["node_id"] == "MAIN_DESK"
        assert root["depth"] == 0
        assert root["parent_id"] is None
        assert set(df[df["node_type"] == "VENUE"]["depth"]) == {4}
        assert df[df["node_type"] == "VENUE"]["gross_exposure_usd"].sum() == pytest.approx(8324750)

    def test_shock_tree_frame(self, live_positions, limit_book):
        result = ShockEngine(limit_book).run(BTC_CRASH, live_positions)
        df = tree_to_frame(result)

        assets = df[df["node_type"] == "ASSET"]
        assert set(assets["depth"]) == {2}
        assert assets["shock_delta_pnl"].sum() == pytest.approx(150)
        assert df["is_margin_call"].dtype == bool
