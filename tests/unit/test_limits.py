"""
Tests for the risk limit book: fail-closed loading, defaults for gaps,
audited overrides and the block list.
"""

import logging
from decimal import Decimal

import pytest

from deskrisk.audit import AuditKind
from deskrisk.risk import (
    LimitType,
    RiskConfigError,
    RiskLimit,
    RiskLimitBook,
    UNBOUNDED_LIMIT_USD,
)


class TestLookup:
    def test_configured_limit(self, limit_book):
        assert limit_book.limit(LimitType.DESK, "MAIN_DESK") == Decimal("10000000")
        assert limit_book.snapshot().is_hard(LimitType.STRATEGY, "TREND_FOLLOW") is False

    def test_unconfigured_entity_is_unbounded(self, limit_book):
        assert limit_book.limit(LimitType.SYMBOL, "SOLUSDT") == UNBOUNDED_LIMIT_USD
        assert limit_book.limit_for(LimitType.SYMBOL, "SOLUSDT") is None

    def test_gap_logged_once_per_entity(self, limit_book, caplog):
        with caplog.at_level(logging.WARNING, logger="deskrisk.risk.limits"):
            limit_book.limit(LimitType.SYMBOL, "SOLUSDT")
            limit_book.limit(LimitType.SYMBOL, "SOLUSDT")
            limit_book.limit(LimitType.TRADER, "CAROL")

        assert caplog.text.count("No SYMBOL limit configured for SOLUSDT") == 1
        assert caplog.text.count("No TRADER limit configured for CAROL") == 1

    def test_custom_default(self):
        book = RiskLimitBook(default_limit_usd=Decimal("5000"))
        assert book.limit(LimitType.VENUE, "SPOT") == Decimal("5000")

    def test_block_list(self, limit_book):
        assert limit_book.is_blocked("TREND_FOLLOW", "SOLUSDT")
        assert not limit_book.is_blocked("ARB_DELTA_NEUTRAL", "SOLUSDT")
        assert not limit_book.is_blocked(None, "SOLUSDT")


class TestConstruction:
    @pytest.mark.parametrize("value", ["0", "-1", "Infinity", "NaN"])
    def test_non_positive_or_non_finite_rejected(self, value):
        with pytest.raises(RiskConfigError):
            RiskLimitBook([RiskLimit(LimitType.DESK, "MAIN_DESK", Decimal(value))])

    def test_duplicate_rejected(self):
        limit = RiskLimit(LimitType.TRADER, "ALICE", Decimal("1"))
        with pytest.raises(RiskConfigError, match="duplicate"):
            RiskLimitBook([limit, limit])

    def test_from_dict(self):
        book = RiskLimitBook.from_dict({
            "limits": [
                {"type": "desk", "entity_id": "MAIN_DESK", "limit_notional_usd": 10000000},
                {"type": "VENUE", "entity_id": "SPOT", "limit_notional_usd": "5e6",
                 "is_hard_block": False},
            ],
            "blocks": [{"strategy_id": "TREND_FOLLOW", "instrument": "SOLUSDT"}],
        })

        assert book.limit(LimitType.VENUE, "SPOT") == Decimal("5000000")
        assert book.snapshot().is_hard(LimitType.DESK, "MAIN_DESK") is True
        assert book.get_blocks() == [("TREND_FOLLOW", "SOLUSDT")]

    @pytest.mark.parametrize("data", [
        {},
        {"limits": {"type": "DESK"}},
        {"limits": [{"type": "PLANET", "entity_id": "X", "limit_notional_usd": 1}]},
        {"limits": [{"type": "DESK", "limit_notional_usd": 1}]},
        {"limits": [{"type": "DESK", "entity_id": "X", "limit_notional_usd": "lots"}]},
        {"limits": [], "blocks": [{"strategy_id": "TREND_FOLLOW"}]},
    ])
    def test_from_dict_fails_closed(self, data):
        with pytest.raises(RiskConfigError):
            RiskLimitBook.from_dict(data)

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "limits.yaml"
        path.write_text(
            "limits:\n"
            "  - {type: STRATEGY, entity_id: ARB_DELTA_NEUTRAL, limit_notional_usd: 5000000}\n"
            "blocks:\n"
            "  - {strategy_id: TREND_FOLLOW, instrument: SOLUSDT}\n"
        )
        book = RiskLimitBook.load_from_yaml(str(path))

        assert book.limit(LimitType.STRATEGY, "ARB_DELTA_NEUTRAL") == Decimal("5000000")
        assert book.is_blocked("TREND_FOLLOW", "SOLUSDT")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(RiskConfigError, match="not found"):
            RiskLimitBook.load_from_yaml(str(tmp_path / "missing.yaml"))

    def test_load_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(RiskConfigError, match="empty"):
            RiskLimitBook.load_from_yaml(str(path))

    def test_load_unparsable_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("limits: [unclosed\n")
        with pytest.raises(RiskConfigError, match="parse"):
            RiskLimitBook.load_from_yaml(str(path))


class TestOverrides:
    def test_update_limit_records_override(self, limit_book, audit):
        version = limit_book.version
        override = limit_book.update_limit(
            "ALICE", Decimal("1500000"), user="risk_officer", reason="quarter-end rebalance"
        )

        assert override.old_limit == Decimal("7000000")
        assert override.new_limit == Decimal("1500000")
        assert override.limit_type == LimitType.TRADER
        assert limit_book.limit(LimitType.TRADER, "ALICE") == Decimal("1500000")
        assert limit_book.version == version + 1
        assert limit_book.get_override_log() == (override,)

        entries = audit.entries(kind=AuditKind.RISK)
        assert entries[-1].user == "risk_officer"
        assert "quarter-end rebalance" in entries[-1].message

    def test_update_keeps_hard_flag(self, limit_book):
        limit_book.update_limit("TREND_FOLLOW", Decimal("2500000"), user="u", reason="r")
        assert limit_book.snapshot().is_hard(LimitType.STRATEGY, "TREND_FOLLOW") is False

    def test_snapshot_is_frozen_at_its_version(self, limit_book):
        before = limit_book.snapshot()
        limit_book.update_limit("BOB", Decimal("1"), user="u", reason="r")

        assert before.limit(LimitType.TRADER, "BOB") == Decimal("3000000")
        assert limit_book.snapshot().limit(LimitType.TRADER, "BOB") == Decimal("1")

    @pytest.mark.parametrize("entity,value,user,reason", [
        ("NOBODY", "1", "u", "r"),
        ("ALICE", "0", "u", "r"),
        ("ALICE", "-10", "u", "r"),
        ("ALICE", "abc", "u", "r"),
        ("ALICE", "1", "", "r"),
        ("ALICE", "1", "u", "  "),
    ])
    def test_update_limit_rejected(self, limit_book, entity, value, user, reason):
        with pytest.raises(RiskConfigError):
            limit_book.update_limit(entity, value, user=user, reason=reason)
        assert limit_book.get_override_log() == ()

    def test_ambiguous_entity_needs_type(self):
        book = RiskLimitBook([
            RiskLimit(LimitType.TRADER, "X", Decimal("1")),
            RiskLimit(LimitType.STRATEGY, "X", Decimal("2")),
        ])
        with pytest.raises(RiskConfigError, match="several types"):
            book.update_limit("X", Decimal("5"), user="u", reason="r")

        book.update_limit("X", Decimal("5"), user="u", reason="r", limit_type=LimitType.STRATEGY)
        assert book.limit(LimitType.STRATEGY, "X") == Decimal("5")
        assert book.limit(LimitType.TRADER, "X") == Decimal("1")

    def test_add_limit(self, limit_book):
        override = limit_book.add_limit(
            RiskLimit(LimitType.SYMBOL, "SOLUSDT", Decimal("1000000")), user="u", reason="new book"
        )

        assert override.old_limit is None
        assert limit_book.limit(LimitType.SYMBOL, "SOLUSDT") == Decimal("1000000")
        with pytest.raises(RiskConfigError, match="already exists"):
            limit_book.add_limit(
                RiskLimit(LimitType.SYMBOL, "SOLUSDT", Decimal("1")), user="u", reason="r"
            )


class TestBlocks:
    def test_block_and_unblock(self, limit_book, audit):
        assert limit_book.block("ARB_DELTA_NEUTRAL", "ETHUSDT", user="u", reason="venue issue")
        assert limit_book.is_blocked("ARB_DELTA_NEUTRAL", "ETHUSDT")
        assert not limit_book.block("ARB_DELTA_NEUTRAL", "ETHUSDT", user="u", reason="again")

        assert limit_book.unblock("ARB_DELTA_NEUTRAL", "ETHUSDT", user="u", reason="fixed")
        assert not limit_book.is_blocked("ARB_DELTA_NEUTRAL", "ETHUSDT")
        assert not limit_book.unblock("ARB_DELTA_NEUTRAL", "ETHUSDT", user="u", reason="again")

        assert len(audit.entries(kind=AuditKind.RISK)) == 2
