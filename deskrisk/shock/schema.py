"""
Shock Schema - scenario definitions and the shocked result tree
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from ..portfolio.schema import LivePosition
from ..risk.schema import RiskNodeType


class ShockType(Enum):
    SPOT_PCT = "SPOT_PCT"           # mark * (1 + value/100), every venue
    FUTURES_PCT = "FUTURES_PCT"     # mark * (1 + value/100), non-SPOT venues only
    FUNDING_ABS = "FUNDING_ABS"     # mark +/- mark * value, perpetual venues only


class ShockScope(Enum):
    GLOBAL = "GLOBAL"
    ASSET = "ASSET"
    STRATEGY = "STRATEGY"


@dataclass(frozen=True)
class ShockParameter:
    """One perturbation. target is a base asset (ASSET) or strategy id (STRATEGY)."""
    shock_type: ShockType
    scope: ShockScope
    value: Decimal
    target: Optional[str] = None
    param_id: str = ""

    def __post_init__(self):
        if self.scope != ShockScope.GLOBAL and not self.target:
            raise ValueError(f"{self.scope.value} shock requires a target")
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", Decimal(str(self.value)))

    def matches(self, position: LivePosition) -> bool:
        if self.scope == ShockScope.GLOBAL:
            return True
        if self.scope == ShockScope.ASSET:
            return position.base_asset == self.target
        return position.strategy_id == self.target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.param_id,
            "type": self.shock_type.value,
            "scope": self.scope.value,
            "target": self.target,
            "value": str(self.value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShockParameter":
        return cls(
            shock_type=ShockType(str(data["type"]).upper()),
            scope=ShockScope(str(data["scope"]).upper()),
            value=Decimal(str(data["value"])),
            target=data.get("target"),
            param_id=str(data.get("id", "")),
        )


@dataclass(frozen=True)
class ShockScenario:
    """Named, ordered list of parameters applied cumulatively."""
    scenario_id: str
    name: str
    parameters: Tuple[ShockParameter, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.scenario_id,
            "name": self.name,
            "parameters": [p.to_dict() for p in self.parameters],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShockScenario":
        return cls(
            scenario_id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            parameters=tuple(ShockParameter.from_dict(p) for p in data.get("parameters", [])),
        )


@dataclass(frozen=True)
class ShockedPosition:
    """A live position re-valued at its simulated mark."""
    position: LivePosition
    shock_mark: Decimal
    shock_unrealized_pnl: Decimal
    shock_notional_usd: Decimal


@dataclass(frozen=True)
class ShockResultNode:
    """One node of the shocked Desk -> Strategy -> Asset tree."""
    node_id: str
    name: str
    node_type: RiskNodeType
    current_pnl: Decimal
    current_gross: Decimal
    current_utilization: Decimal
    shock_pnl: Decimal
    shock_delta_pnl: Decimal        # shock_pnl - current_pnl
    shock_gross: Decimal
    shock_utilization: Decimal
    limit_usd: Decimal
    is_breached: bool               # shock_gross > limit
    is_margin_call: bool            # shock_utilization > margin call multiple
    children: Tuple["ShockResultNode", ...] = ()

    def walk(self) -> Iterator["ShockResultNode"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, node_id: str) -> Optional["ShockResultNode"]:
        for node in self.walk():
            if node.node_id == node_id:
                return node
        return None

    def to_row(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "node_type": self.node_type.value,
            "current_pnl": self.current_pnl,
            "current_gross": self.current_gross,
            "current_utilization": self.current_utilization,
            "shock_pnl": self.shock_pnl,
            "shock_delta_pnl": self.shock_delta_pnl,
            "shock_gross": self.shock_gross,
            "shock_utilization": self.shock_utilization,
            "limit_usd": self.limit_usd,
            "is_breached": self.is_breached,
            "is_margin_call": self.is_margin_call,
        }

    def to_dict(self) -> Dict[str, Any]:
        row = {
            key: str(value) if isinstance(value, Decimal) else value
            for key, value in self.to_row().items()
        }
        row["children"] = [child.to_dict() for child in self.children]
        return row
