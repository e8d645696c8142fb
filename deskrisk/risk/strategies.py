"""
Strategy Registry - lifecycle state of the desk's strategies

State decides what a strategy may send:
- RUNNING:  anything (limits permitting)
- DRAINING: risk-reducing orders only, so the book can be flattened
- PAUSED:   nothing
- ERROR:    nothing

A strategy that is not registered is not constrained here; its orders are
still subject to limits and blocks.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..audit import AuditKind, AuditLog
from .schema import RiskCheckName, RiskCheckResult

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "STRATEGY_REGISTRY"


class StrategyState(Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    DRAINING = "DRAINING"
    ERROR = "ERROR"

    @property
    def accepts_new_risk(self) -> bool:
        return self == StrategyState.RUNNING

    @property
    def accepts_risk_reduction(self) -> bool:
        return self in (StrategyState.RUNNING, StrategyState.DRAINING)


@dataclass
class StrategyInstance:
    """A deployed strategy."""
    strategy_id: str
    name: str
    family: str
    owner: str
    state: StrategyState = StrategyState.RUNNING
    desk: str = "MAIN_DESK"
    venues: Tuple[str, ...] = ()
    instruments: Tuple[str, ...] = ()
    risk_flags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.strategy_id,
            "name": self.name,
            "family": self.family,
            "owner": self.owner,
            "state": self.state.value,
            "desk": self.desk,
            "venues": list(self.venues),
            "instruments": list(self.instruments),
            "risk_flags": list(self.risk_flags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyInstance":
        return cls(
            strategy_id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            family=str(data.get("family", "UNKNOWN")),
            owner=str(data.get("owner", "HOUSE")),
            state=StrategyState(str(data.get("state", "RUNNING")).upper()),
            desk=str(data.get("desk", "MAIN_DESK")),
            venues=tuple(data.get("venues") or ()),
            instruments=tuple(data.get("instruments") or ()),
            risk_flags=tuple(data.get("risk_flags") or ()),
        )


@dataclass(frozen=True)
class StrategyStateChange:
    """Audit record of one operator action on a strategy."""
    strategy_id: str
    user: str
    action: str
    reason: str
    old_state: Optional[StrategyState] = None
    new_state: Optional[StrategyState] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "strategy_id": self.strategy_id,
            "user": self.user,
            "action": self.action,
            "reason": self.reason,
            "old_state": self.old_state.value if self.old_state else None,
            "new_state": self.new_state.value if self.new_state else None,
        }


class StrategyRegistry:
    """
    Thread-safe registry of StrategyInstances with an audited change log.

    Usage:
        registry = StrategyRegistry([StrategyInstance("TREND_FOLLOW", ...)], audit=audit)
        registry.update_state("TREND_FOLLOW", StrategyState.DRAINING,
                              user="BOB", reason="reduce into close")
        check = registry.check_order("TREND_FOLLOW", reduces_risk=False)
        check.passed   # False
    """

    def __init__(
        self,
        strategies: Iterable[StrategyInstance] = (),
        audit: Optional[AuditLog] = None
    ):
        self.audit = audit if audit is not None else AuditLog()
        self._lock = threading.Lock()
        self._strategies: Dict[str, StrategyInstance] = {}
        self._log: List[StrategyStateChange] = []
        for strategy in strategies:
            self._strategies[strategy.strategy_id] = replace(strategy)

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        audit: Optional[AuditLog] = None
    ) -> "StrategyRegistry":
        """Build from a mapping with a 'strategies' list (missing = empty registry)."""
        return cls(
            (StrategyInstance.from_dict(item) for item in data.get("strategies") or []),
            audit=audit,
        )

    def register(self, strategy: StrategyInstance) -> None:
        with self._lock:
            self._strategies[strategy.strategy_id] = replace(strategy)
        logger.info(f"Strategy registered: {strategy.strategy_id} ({strategy.state.value})")

    def get(self, strategy_id: str) -> Optional[StrategyInstance]:
        with self._lock:
            strategy = self._strategies.get(strategy_id)
            return replace(strategy) if strategy else None

    def get_all(self) -> List[StrategyInstance]:
        with self._lock:
            return [replace(s) for s in self._strategies.values()]

    def get_log(self) -> Tuple[StrategyStateChange, ...]:
        with self._lock:
            return tuple(self._log)

    def update_state(
        self,
        strategy_id: str,
        new_state: StrategyState,
        user: str,
        reason: str
    ) -> StrategyStateChange:
        """
        Move a strategy to a new lifecycle state.

        Raises:
            KeyError: Unknown strategy
        """
        with self._lock:
            strategy = self._strategies.get(strategy_id)
            if strategy is None:
                raise KeyError(f"Unknown strategy {strategy_id}")
            change = StrategyStateChange(
                strategy_id=strategy_id,
                user=user,
                action=f"STATE_CHANGE: {new_state.value}",
                reason=reason,
                old_state=strategy.state,
                new_state=new_state,
            )
            strategy.state = new_state
            self._log.append(change)

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.COMMAND,
            f"{strategy_id} transitioned {change.old_state.value} -> {new_state.value}. "
            f"Reason: {reason}",
            user=user,
            payload=change.to_dict(),
        )
        return change

    def update_param(
        self,
        strategy_id: str,
        param: str,
        value: str,
        user: str,
        reason: str
    ) -> StrategyStateChange:
        """Record a risk-target/parameter change requested for a strategy."""
        with self._lock:
            if strategy_id not in self._strategies:
                raise KeyError(f"Unknown strategy {strategy_id}")
            change = StrategyStateChange(
                strategy_id=strategy_id,
                user=user,
                action=f"PARAM_CHANGE: {param}={value}",
                reason=reason,
            )
            self._log.append(change)

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.COMMAND,
            f"{strategy_id} param {param} updated to {value}",
            user=user,
            payload=change.to_dict(),
        )
        return change

    def check_order(self, strategy_id: Optional[str], reduces_risk: bool) -> RiskCheckResult:
        """Does the strategy's state allow this order?"""
        strategy = self.get(strategy_id) if strategy_id else None
        if strategy is None:
            return RiskCheckResult(
                name=RiskCheckName.STRATEGY_STATE,
                passed=True,
                reason="Strategy not registered, no state constraint",
                details={"strategy_id": strategy_id},
            )

        state = strategy.state
        allowed = state.accepts_risk_reduction if reduces_risk else state.accepts_new_risk
        if allowed:
            reason = f"Strategy {strategy_id} is {state.value}"
        elif state == StrategyState.DRAINING:
            reason = f"Strategy {strategy_id} is DRAINING, only risk-reducing orders accepted"
        else:
            reason = f"Strategy {strategy_id} is {state.value}, orders refused"

        return RiskCheckResult(
            name=RiskCheckName.STRATEGY_STATE,
            passed=allowed,
            reason=reason,
            details={
                "strategy_id": strategy_id,
                "state": state.value,
                "reduces_risk": reduces_risk,
            },
            threshold="RUNNING" if not reduces_risk else "RUNNING|DRAINING",
            actual=state.value,
        )
