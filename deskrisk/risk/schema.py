"""
Risk Schema - limits, the exposure tree and pre-trade results

Every pre-trade decision is explainable: PreTradeResult carries each check
that ran, which one decided the outcome, and why.

RiskNode is a tagged tree: node_type is one of a fixed set of levels
(DESK -> STRATEGY -> TRADER -> ASSET -> VENUE) and children are the next
level down. Trees are rebuilt from scratch and never mutated after build.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class LimitType(Enum):
    """What a RiskLimit constrains."""
    DESK = "DESK"
    STRATEGY = "STRATEGY"
    TRADER = "TRADER"
    SYMBOL = "SYMBOL"
    VENUE = "VENUE"


@dataclass(frozen=True)
class RiskLimit:
    """
    Gross notional ceiling for one entity.

    is_hard_block=True refuses orders that would cross the limit;
    False lets them through with a warning.
    """
    limit_type: LimitType
    entity_id: str
    limit_notional_usd: Decimal
    is_hard_block: bool = True

    @property
    def key(self) -> Tuple[LimitType, str]:
        return (self.limit_type, self.entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.limit_type.value,
            "entity_id": self.entity_id,
            "limit_notional_usd": str(self.limit_notional_usd),
            "is_hard_block": self.is_hard_block,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskLimit":
        """Build from a config mapping. Raises ValueError/KeyError on bad input."""
        return cls(
            limit_type=LimitType(str(data["type"]).upper()),
            entity_id=str(data["entity_id"]),
            limit_notional_usd=Decimal(str(data["limit_notional_usd"])),
            is_hard_block=bool(data.get("is_hard_block", True)),
        )


@dataclass(frozen=True)
class LimitOverride:
    """One audited change to the limit book."""
    timestamp: datetime
    limit_type: LimitType
    entity_id: str
    old_limit: Optional[Decimal]    # None when the limit was added
    new_limit: Decimal
    user: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.limit_type.value,
            "entity_id": self.entity_id,
            "old_limit": str(self.old_limit) if self.old_limit is not None else None,
            "new_limit": str(self.new_limit),
            "user": self.user,
            "reason": self.reason,
        }


class RiskNodeType(Enum):
    """Levels of the exposure tree, root first."""
    DESK = "DESK"
    STRATEGY = "STRATEGY"
    TRADER = "TRADER"
    ASSET = "ASSET"
    VENUE = "VENUE"


@dataclass(frozen=True)
class RiskNode:
    """One node of the Desk -> Strategy -> Trader -> Asset -> Venue tree."""
    node_id: str
    name: str
    node_type: RiskNodeType
    gross_exposure_usd: Decimal
    net_exposure_usd: Decimal
    long_exposure_usd: Decimal
    short_exposure_usd: Decimal
    limit_usd: Decimal
    utilization: Decimal            # gross / limit
    is_breached: bool               # gross > limit
    is_blocked: bool = False
    is_hard_limit: bool = True
    position_count: int = 0
    children: Tuple["RiskNode", ...] = ()

    def walk(self) -> Iterator["RiskNode"]:
        """Depth-first, parent before children."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, node_id: str) -> Optional["RiskNode"]:
        for node in self.walk():
            if node.node_id == node_id:
                return node
        return None

    def child(self, name: str) -> Optional["RiskNode"]:
        for node in self.children:
            if node.name == name:
                return node
        return None

    def breached_nodes(self) -> List["RiskNode"]:
        return [node for node in self.walk() if node.is_breached]

    def to_row(self) -> Dict[str, Any]:
        """Flat view without children (see portfolio.report.tree_to_frame)."""
        return {
            "node_id": self.node_id,
            "name": self.name,
            "node_type": self.node_type.value,
            "gross_exposure_usd": self.gross_exposure_usd,
            "net_exposure_usd": self.net_exposure_usd,
            "long_exposure_usd": self.long_exposure_usd,
            "short_exposure_usd": self.short_exposure_usd,
            "limit_usd": self.limit_usd,
            "utilization": self.utilization,
            "is_breached": self.is_breached,
            "is_blocked": self.is_blocked,
            "is_hard_limit": self.is_hard_limit,
            "position_count": self.position_count,
        }

    def to_dict(self) -> Dict[str, Any]:
        row = self.to_row()
        for key in ("gross_exposure_usd", "net_exposure_usd", "long_exposure_usd",
                    "short_exposure_usd", "limit_usd", "utilization"):
            row[key] = str(row[key])
        row["children"] = [child.to_dict() for child in self.children]
        return row


class RiskCheckName(Enum):
    """Pre-trade checks, in evaluation order."""
    STRATEGY_STATE = "strategy_state"
    BLOCK_LIST = "block_list"
    STRATEGY_LIMIT = "strategy_limit"
    SYMBOL_LIMIT = "symbol_limit"
    TRADER_LIMIT = "trader_limit"
    VENUE_LIMIT = "venue_limit"
    DESK_LIMIT = "desk_limit"


@dataclass
class RiskCheckResult:
    """
    Result of a single pre-trade check.

    Example:
        RiskCheckResult(
            name=RiskCheckName.STRATEGY_LIMIT,
            passed=False,
            reason="Strategy TREND_FOLLOW limit exceeded",
            threshold="$2,000,000",
            actual="$2,150,000",
            is_hard=False,
        )
    """
    name: RiskCheckName
    passed: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)
    threshold: Optional[str] = None
    actual: Optional[str] = None
    is_hard: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "passed": self.passed,
            "reason": self.reason,
            "threshold": self.threshold,
            "actual": self.actual,
            "is_hard": self.is_hard,
            "details": self.details,
        }


@dataclass
class PreTradeResult:
    """
    Outcome of the pre-trade gate.

    - passed=True,  hard_block=False, warning=None -> clean pass
    - passed=True,  hard_block=False, warning=...  -> soft limit crossed, proceed
    - passed=False, hard_block=True                -> refused

    Usage:
        result = gate.check("ARB_DELTA_NEUTRAL", "ALICE", "BTCUSDT", "SPOT",
                            Decimal("250000"), snapshot.positions)
        if result.hard_block:
            print(f"Refused by {result.first_failure.name.value}: {result.reason}")
    """
    passed: bool
    hard_block: bool
    warning: Optional[str]
    checks: List[RiskCheckResult]
    first_failure: Optional[RiskCheckResult] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def reason(self) -> Optional[str]:
        return self.first_failure.reason if self.first_failure else None

    @property
    def details(self) -> Dict[str, Any]:
        return self.first_failure.details if self.first_failure else {}

    @property
    def has_warning(self) -> bool:
        return self.warning is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "hard_block": self.hard_block,
            "warning": self.warning,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "first_failure": self.first_failure.to_dict() if self.first_failure else None,
            "checks": [check.to_dict() for check in self.checks],
        }

    @classmethod
    def approved_result(cls, checks: List[RiskCheckResult]) -> "PreTradeResult":
        return cls(passed=True, hard_block=False, warning=None, checks=checks)

    @classmethod
    def warning_result(
        cls,
        failed_check: RiskCheckResult,
        checks: List[RiskCheckResult]
    ) -> "PreTradeResult":
        return cls(
            passed=True,
            hard_block=False,
            warning=failed_check.reason,
            checks=checks,
            first_failure=failed_check,
        )

    @classmethod
    def rejected_result(
        cls,
        failed_check: RiskCheckResult,
        checks: List[RiskCheckResult]
    ) -> "PreTradeResult":
        return cls(
            passed=False,
            hard_block=True,
            warning=None,
            checks=checks,
            first_failure=failed_check,
        )
