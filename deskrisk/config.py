"""
Desk configuration - cadences, simulation knobs and model constants

FAIL CLOSED PRINCIPLE:
- Missing config file   -> RiskConfigError (not defaults)
- Invalid values        -> RiskConfigError (not silent correction)
- Parse errors          -> RiskConfigError (not empty config)

Defaults exist for tests and the demo. A desk run from a file goes through
load_from_yaml(), which validates everything in __post_init__.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .risk.limits import UNBOUNDED_LIMIT_USD, RiskConfigError

CONFIG_ENV_VAR = "DESKRISK_CONFIG"
LOG_LEVEL_ENV_VAR = "DESKRISK_LOG_LEVEL"


@dataclass
class DeskConfig:
    """
    Everything tunable about the desk core, in one place.

    max_slippage_pct is in percent (0.05 = 5 bps). funding_events_per_day and
    margin_call_multiple are modelling assumptions, not venue facts.
    """
    valuation_interval_seconds: float = 0.25
    risk_interval_seconds: float = 0.25
    fill_delay_seconds: float = 0.5
    max_slippage_pct: Decimal = Decimal("0.05")
    slippage_seed: Optional[int] = None
    funding_events_per_day: int = 3
    margin_call_multiple: Decimal = Decimal("1.2")
    default_limit_usd: Decimal = UNBOUNDED_LIMIT_USD
    desk_id: str = "MAIN_DESK"
    desk_name: str = "GLOBAL DESK"
    audit_capacity: int = 5000
    account_balances: Dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        """Coerce money fields to Decimal and validate - fail closed on invalid."""
        try:
            self.max_slippage_pct = Decimal(str(self.max_slippage_pct))
            self.margin_call_multiple = Decimal(str(self.margin_call_multiple))
            self.default_limit_usd = Decimal(str(self.default_limit_usd))
            self.account_balances = {
                str(account): Decimal(str(amount))
                for account, amount in (self.account_balances or {}).items()
            }
        except (InvalidOperation, ValueError, AttributeError) as e:
            raise RiskConfigError(f"Invalid desk configuration value: {e}")
        self._validate()

    def _validate(self):
        """Raises RiskConfigError listing every invalid value."""
        errors = []

        if self.valuation_interval_seconds <= 0:
            errors.append(
                f"valuation_interval_seconds must be > 0, got {self.valuation_interval_seconds}"
            )
        if self.risk_interval_seconds <= 0:
            errors.append(f"risk_interval_seconds must be > 0, got {self.risk_interval_seconds}")
        if self.fill_delay_seconds < 0:
            errors.append(f"fill_delay_seconds must be >= 0, got {self.fill_delay_seconds}")
        if self.max_slippage_pct < 0:
            errors.append(f"max_slippage_pct must be >= 0, got {self.max_slippage_pct}")
        if self.funding_events_per_day <= 0:
            errors.append(
                f"funding_events_per_day must be > 0, got {self.funding_events_per_day}"
            )
        if self.margin_call_multiple <= 0:
            errors.append(f"margin_call_multiple must be > 0, got {self.margin_call_multiple}")
        if self.default_limit_usd <= 0:
            errors.append(f"default_limit_usd must be > 0, got {self.default_limit_usd}")
        if self.audit_capacity <= 0:
            errors.append(f"audit_capacity must be > 0, got {self.audit_capacity}")
        if not self.desk_id:
            errors.append("desk_id must not be empty")

        for account, amount in self.account_balances.items():
            if not amount.is_finite():
                errors.append(f"account balance for {account} must be finite, got {amount}")

        if errors:
            raise RiskConfigError(f"Invalid desk configuration: {'; '.join(errors)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeskConfig":
        """Build from a 'desk' mapping; unknown keys are an error."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise RiskConfigError(f"Unknown desk config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def load_from_yaml(cls, path: str = "config.yaml") -> "DeskConfig":
        """
        Load the 'desk' section (and 'accounts', if present) from YAML.

        FAIL CLOSED: Raises RiskConfigError if:
        - File doesn't exist
        - File can't be parsed
        - 'desk' section missing
        - Any value is invalid
        """
        config_path = Path(path)

        if not config_path.exists():
            raise RiskConfigError(
                f"Desk config file not found: {path}. "
                f"Cannot run without explicit desk configuration."
            )

        try:
            with open(config_path, "r") as f:
                full_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RiskConfigError(f"Failed to parse desk config {path}: {e}")

        if full_config is None:
            raise RiskConfigError(f"Desk config file is empty: {path}")

        desk_data = full_config.get("desk")
        if desk_data is None:
            raise RiskConfigError(
                f"No 'desk' section in config file: {path}. "
                f"Desk configuration is required."
            )

        desk_data = dict(desk_data)
        if "accounts" in full_config and "account_balances" not in desk_data:
            desk_data["account_balances"] = full_config["accounts"] or {}

        try:
            return cls.from_dict(desk_data)
        except TypeError as e:
            raise RiskConfigError(f"Invalid desk config structure: {e}")

    @staticmethod
    def resolve_path(default: str = "config.yaml") -> str:
        """Config path from DESKRISK_CONFIG, else default."""
        return os.getenv(CONFIG_ENV_VAR, default)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "valuation_interval_seconds": self.valuation_interval_seconds,
            "risk_interval_seconds": self.risk_interval_seconds,
            "fill_delay_seconds": self.fill_delay_seconds,
            "max_slippage_pct": str(self.max_slippage_pct),
            "slippage_seed": self.slippage_seed,
            "funding_events_per_day": self.funding_events_per_day,
            "margin_call_multiple": str(self.margin_call_multiple),
            "default_limit_usd": str(self.default_limit_usd),
            "desk_id": self.desk_id,
            "desk_name": self.desk_name,
            "audit_capacity": self.audit_capacity,
            "account_balances": {k: str(v) for k, v in self.account_balances.items()},
        }
