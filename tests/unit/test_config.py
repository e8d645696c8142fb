"""
Tests for DeskConfig: defaults, validation and fail-closed YAML loading.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from deskrisk.config import CONFIG_ENV_VAR, DeskConfig
from deskrisk.risk import RiskConfigError

REPO_CONFIG = Path(__file__).parent.parent.parent / "config.yaml"


class TestDeskConfig:
    def test_defaults(self):
        config = DeskConfig()

        assert config.funding_events_per_day == 3
        assert config.margin_call_multiple == Decimal("1.2")
        assert config.desk_id == "MAIN_DESK"
        assert config.default_limit_usd == Decimal("1e12")

    def test_money_fields_coerced(self):
        config = DeskConfig(max_slippage_pct=0.1, account_balances={"A": 1000})

        assert config.max_slippage_pct == Decimal("0.1")
        assert config.account_balances == {"A": Decimal("1000")}

    @pytest.mark.parametrize("kwargs", [
        {"valuation_interval_seconds": 0},
        {"risk_interval_seconds": -1},
        {"fill_delay_seconds": -0.1},
        {"max_slippage_pct": -1},
        {"funding_events_per_day": 0},
        {"margin_call_multiple": 0},
        {"default_limit_usd": 0},
        {"audit_capacity": 0},
        {"desk_id": ""},
        {"max_slippage_pct": "not-a-number"},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(RiskConfigError):
            DeskConfig(**kwargs)

    def test_all_errors_reported_together(self):
        with pytest.raises(RiskConfigError) as exc:
            DeskConfig(valuation_interval_seconds=0, audit_capacity=0)
        assert "valuation_interval_seconds" in str(exc.value)
        assert "audit_capacity" in str(exc.value)

    def test_unknown_key_rejected(self):
        with pytest.raises(RiskConfigError, match="max_leverage"):
            DeskConfig.from_dict({"max_leverage": 5})


class TestLoadFromYaml:
    def write(self, tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)

    def test_load_desk_and_accounts(self, tmp_path):
        path = self.write(tmp_path, (
            "desk:\n"
            "  desk_id: ASIA_DESK\n"
            "  fill_delay_seconds: 0\n"
            "  margin_call_multiple: 1.5\n"
            "accounts:\n"
            "  PROP_DESK_MAIN: 250000\n"
        ))
        config = DeskConfig.load_from_yaml(path)

        assert config.desk_id == "ASIA_DESK"
        assert config.fill_delay_seconds == 0
        assert config.margin_call_multiple == Decimal("1.5")
        assert config.account_balances == {"PROP_DESK_MAIN": Decimal("250000")}

    def test_missing_file(self, tmp_path):
        with pytest.raises(RiskConfigError, match="not found"):
            DeskConfig.load_from_yaml(str(tmp_path / "nope.yaml"))

    def test_missing_desk_section(self, tmp_path):
        path = self.write(tmp_path, "limits: []\n")
        with pytest.raises(RiskConfigError, match="No 'desk' section"):
            DeskConfig.load_from_yaml(path)

    def test_empty_file(self, tmp_path):
        with pytest.raises(RiskConfigError, match="empty"):
            DeskConfig.load_from_yaml(self.write(tmp_path, ""))

    def test_parse_error(self, tmp_path):
        with pytest.raises(RiskConfigError, match="parse"):
            DeskConfig.load_from_yaml(self.write(tmp_path, "desk: {unclosed\n"))

    def test_invalid_value_in_file(self, tmp_path):
        path = self.write(tmp_path, "desk:\n  funding_events_per_day: 0\n")
        with pytest.raises(RiskConfigError, match="funding_events_per_day"):
            DeskConfig.load_from_yaml(path)

    def test_repo_config_loads(self):
        config = DeskConfig.load_from_yaml(str(REPO_CONFIG))

        assert config.desk_id == "MAIN_DESK"
        assert sum(config.account_balances.values()) == Decimal("2000000")

    def test_resolve_path_from_env(self, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, "/etc/desk.yaml")
        assert DeskConfig.resolve_path() == "/etc/desk.yaml"
        monkeypatch.delenv(CONFIG_ENV_VAR)
        assert DeskConfig.resolve_path() == "config.yaml"
