"""
Risk Limit Book - notional limits and the strategy/instrument deny-list

One book is shared by the hierarchy builder, the pre-trade gate and the shock
engine, so all three always judge exposure against the same numbers. Readers
take a LimitBookSnapshot (frozen, versioned); the book itself only changes
through audited commands (update_limit, add_limit, block, unblock).

FAIL CLOSED PRINCIPLE:
- Missing config file     -> RiskConfigError
- Unparsable YAML         -> RiskConfigError
- Missing 'limits' section -> RiskConfigError
- Limit <= 0 / bad type   -> RiskConfigError
- Override of an unknown entity -> RiskConfigError

An entity with no configured limit is NOT an error: it is a configuration
gap, valued at default_limit_usd ("unbounded") and logged once per entity.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import yaml

from ..audit import AuditKind, AuditLog
from .schema import LimitOverride, LimitType, RiskLimit

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "RISK_LIMITS"

UNBOUNDED_LIMIT_USD = Decimal("1e12")

BlockKey = Tuple[str, str]    # (strategy_id, instrument)
GapReporter = Callable[[LimitType, str], None]


class RiskConfigError(Exception):
    """Raised when limit configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class LimitBookSnapshot:
    """Immutable view of the limit book at one version."""
    limits: Tuple[RiskLimit, ...]
    blocks: FrozenSet[BlockKey]
    version: int
    default_limit_usd: Decimal = UNBOUNDED_LIMIT_USD
    on_gap: Optional[GapReporter] = field(default=None, compare=False, repr=False)

    def limit_for(self, limit_type: LimitType, entity_id: str) -> Optional[RiskLimit]:
        for limit in self.limits:
            if limit.limit_type == limit_type and limit.entity_id == entity_id:
                return limit
        return None

    def limit(self, limit_type: LimitType, entity_id: str) -> Decimal:
        """Configured limit, or default_limit_usd when none is configured."""
        configured = self.limit_for(limit_type, entity_id)
        if configured is not None:
            return configured.limit_notional_usd
        if self.on_gap is not None:
            self.on_gap(limit_type, entity_id)
        return self.default_limit_usd

    def is_hard(self, limit_type: LimitType, entity_id: str) -> bool:
        configured = self.limit_for(limit_type, entity_id)
        return configured.is_hard_block if configured is not None else True

    def is_blocked(self, strategy_id: Optional[str], instrument: str) -> bool:
        if strategy_id is None:
            return False
        return (strategy_id, instrument) in self.blocks


class RiskLimitBook:
    """
    Thread-safe, audited store of RiskLimits and blocks.

    Usage:
        book = RiskLimitBook.load_from_yaml("config.yaml", audit=audit)
        book.limit(LimitType.STRATEGY, "ARB_DELTA_NEUTRAL")     # Decimal
        book.update_limit("ALICE", Decimal("1500000"), user="risk_officer",
                          reason="quarter-end rebalance")
        snap = book.snapshot()                                  # frozen copy
    """

    def __init__(
        self,
        limits: Iterable[RiskLimit] = (),
        blocks: Iterable[BlockKey] = (),
        default_limit_usd: Decimal = UNBOUNDED_LIMIT_USD,
        audit: Optional[AuditLog] = None,
    ):
        self.audit = audit if audit is not None else AuditLog()
        self.default_limit_usd = Decimal(str(default_limit_usd))
        if self.default_limit_usd <= 0:
            raise RiskConfigError(
                f"default_limit_usd must be > 0, got {self.default_limit_usd}"
            )

        self._lock = threading.Lock()
        self._limits: Dict[Tuple[LimitType, str], RiskLimit] = {}
        self._blocks: Set[BlockKey] = set()
        self._overrides: List[LimitOverride] = []
        self._reported_gaps: Set[Tuple[LimitType, str]] = set()
        self._version = 0

        errors = []
        for limit in limits:
            if limit.key in self._limits:
                errors.append(f"duplicate limit {limit.limit_type.value}:{limit.entity_id}")
                continue
            problem = self._check_value(Decimal(str(limit.limit_notional_usd)))
            if problem:
                errors.append(f"{limit.limit_type.value}:{limit.entity_id} {problem}")
                continue
            self._limits[limit.key] = limit
        if errors:
            raise RiskConfigError(f"Invalid risk limits: {'; '.join(errors)}")

        for strategy_id, instrument in blocks:
            self._blocks.add((strategy_id, instrument))

        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        default_limit_usd: Decimal = UNBOUNDED_LIMIT_USD,
        audit: Optional[AuditLog] = None,
    ) -> "RiskLimitBook":
        """
        Build from a mapping with a 'limits' list and an optional 'blocks' list.

        limits: [{type, entity_id, limit_notional_usd, is_hard_block}]
        blocks: [{strategy_id, instrument}]
        """
        raw_limits = data.get("limits")
        if raw_limits is None:
            raise RiskConfigError("No 'limits' section in risk configuration")
        if not isinstance(raw_limits, list):
            raise RiskConfigError("'limits' must be a list")

        limits = []
        for i, item in enumerate(raw_limits):
            try:
                limits.append(RiskLimit.from_dict(item))
            except (KeyError, ValueError, TypeError, InvalidOperation) as e:
                raise RiskConfigError(f"Invalid limit entry #{i} {item!r}: {e}")

        blocks = []
        for i, item in enumerate(data.get("blocks") or []):
            try:
                blocks.append((str(item["strategy_id"]), str(item["instrument"])))
            except (KeyError, TypeError) as e:
                raise RiskConfigError(f"Invalid block entry #{i} {item!r}: {e}")

        return cls(limits, blocks, default_limit_usd=default_limit_usd, audit=audit)

    @classmethod
    def load_from_yaml(
        cls,
        path: str = "config.yaml",
        default_limit_usd: Decimal = UNBOUNDED_LIMIT_USD,
        audit: Optional[AuditLog] = None,
    ) -> "RiskLimitBook":
        """
        Load limits and blocks from a YAML file.

        FAIL CLOSED: missing file, parse error or missing 'limits' section
        raise RiskConfigError.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise RiskConfigError(
                f"Risk limit file not found: {path}. "
                f"Cannot run without explicit risk limits."
            )

        try:
            with open(config_path, "r") as f:
                full_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RiskConfigError(f"Failed to parse risk limits {path}: {e}")

        if full_config is None:
            raise RiskConfigError(f"Risk limit file is empty: {path}")

        book = cls.from_dict(full_config, default_limit_usd=default_limit_usd, audit=audit)
        logger.info(
            f"Loaded {len(book.get_limits())} limits and "
            f"{len(book.get_blocks())} blocks from {path}"
        )
        return book

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> LimitBookSnapshot:
        with self._lock:
            return self._snapshot

    def limit_for(self, limit_type: LimitType, entity_id: str) -> Optional[RiskLimit]:
        return self.snapshot().limit_for(limit_type, entity_id)

    def limit(self, limit_type: LimitType, entity_id: str) -> Decimal:
        return self.snapshot().limit(limit_type, entity_id)

    def is_blocked(self, strategy_id: Optional[str], instrument: str) -> bool:
        return self.snapshot().is_blocked(strategy_id, instrument)

    def get_limits(self) -> List[RiskLimit]:
        return list(self.snapshot().limits)

    def get_blocks(self) -> List[BlockKey]:
        return sorted(self.snapshot().blocks)

    def get_override_log(self) -> Tuple[LimitOverride, ...]:
        with self._lock:
            return tuple(self._overrides)

    # ------------------------------------------------------------------
    # Audited commands
    # ------------------------------------------------------------------

    def update_limit(
        self,
        entity_id: str,
        new_limit: Decimal,
        user: str,
        reason: str,
        limit_type: Optional[LimitType] = None,
    ) -> LimitOverride:
        """
        Change an existing limit and record who did it and why.

        Args:
            entity_id: Entity whose limit changes (e.g. "ALICE", "BTCUSDT")
            new_limit: New gross notional ceiling in USD (> 0)
            user: Author of the override
            reason: Free-text justification (required)
            limit_type: Disambiguates an entity id configured under two types

        Raises:
            RiskConfigError: Unknown/ambiguous entity, bad value, missing user/reason
        """
        new_limit = self._parse_limit(new_limit)
        self._require_author(user, reason)

        with self._lock:
            matches = [
                limit for limit in self._limits.values()
                if limit.entity_id == entity_id
                and (limit_type is None or limit.limit_type == limit_type)
            ]
            if not matches:
                raise RiskConfigError(f"No limit configured for entity {entity_id}")
            if len(matches) > 1:
                types = ", ".join(sorted(m.limit_type.value for m in matches))
                raise RiskConfigError(
                    f"Entity {entity_id} has limits of several types ({types}); "
                    f"pass limit_type"
                )

            current = matches[0]
            self._limits[current.key] = RiskLimit(
                limit_type=current.limit_type,
                entity_id=current.entity_id,
                limit_notional_usd=new_limit,
                is_hard_block=current.is_hard_block,
            )
            override = self._record_override(
                current.limit_type, entity_id, current.limit_notional_usd, new_limit, user, reason
            )

        self._audit_override(override)
        return override

    def add_limit(self, limit: RiskLimit, user: str, reason: str) -> LimitOverride:
        """Configure a limit for a new entity. Existing ones go through update_limit."""
        self._parse_limit(limit.limit_notional_usd)
        self._require_author(user, reason)

        with self._lock:
            if limit.key in self._limits:
                raise RiskConfigError(
                    f"Limit {limit.limit_type.value}:{limit.entity_id} already exists, "
                    f"use update_limit"
                )
            self._limits[limit.key] = limit
            self._reported_gaps.discard(limit.key)
            override = self._record_override(
                limit.limit_type, limit.entity_id, None, limit.limit_notional_usd, user, reason
            )

        self._audit_override(override)
        return override

    def block(self, strategy_id: str, instrument: str, user: str, reason: str) -> bool:
        """Deny a strategy any new risk on an instrument. Returns False if already blocked."""
        self._require_author(user, reason)
        with self._lock:
            if (strategy_id, instrument) in self._blocks:
                return False
            self._blocks.add((strategy_id, instrument))
            self._bump()

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.RISK,
            f"Blocked {strategy_id} on {instrument}: {reason}",
            user=user,
            payload={"strategy_id": strategy_id, "instrument": instrument, "reason": reason},
        )
        return True

    def unblock(self, strategy_id: str, instrument: str, user: str, reason: str) -> bool:
        """Lift a block. Returns False if there was none."""
        self._require_author(user, reason)
        with self._lock:
            if (strategy_id, instrument) not in self._blocks:
                return False
            self._blocks.discard((strategy_id, instrument))
            self._bump()

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.RISK,
            f"Unblocked {strategy_id} on {instrument}: {reason}",
            user=user,
            payload={"strategy_id": strategy_id, "instrument": instrument, "reason": reason},
        )
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_value(value: Decimal) -> Optional[str]:
        if not value.is_finite():
            return f"limit must be finite, got {value}"
        if value <= 0:
            return f"limit must be > 0, got {value}"
        return None

    def _parse_limit(self, value: Any) -> Decimal:
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            raise RiskConfigError(f"Limit is not a number: {value!r}")
        problem = self._check_value(parsed)
        if problem:
            raise RiskConfigError(problem)
        return parsed

    @staticmethod
    def _require_author(user: str, reason: str) -> None:
        if not user or not user.strip():
            raise RiskConfigError("Limit changes require a user")
        if not reason or not reason.strip():
            raise RiskConfigError("Limit changes require a reason")

    def _record_override(
        self,
        limit_type: LimitType,
        entity_id: str,
        old: Optional[Decimal],
        new: Decimal,
        user: str,
        reason: str,
    ) -> LimitOverride:
        # Caller holds the lock
        override = LimitOverride(
            timestamp=datetime.utcnow(),
            limit_type=limit_type,
            entity_id=entity_id,
            old_limit=old,
            new_limit=new,
            user=user,
            reason=reason,
        )
        self._overrides.append(override)
        self._bump()
        return override

    def _audit_override(self, override: LimitOverride) -> None:
        old = override.old_limit if override.old_limit is not None else "NEW"
        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.RISK,
            f"Limit update: {override.limit_type.value}:{override.entity_id} "
            f"{old} -> {override.new_limit}. Reason: {override.reason}",
            user=override.user,
            payload=override.to_dict(),
        )

    def _bump(self) -> None:
        # Caller holds the lock
        self._version += 1
        self._snapshot = self._build_snapshot()

    def _build_snapshot(self) -> LimitBookSnapshot:
        return LimitBookSnapshot(
            limits=tuple(self._limits.values()),
            blocks=frozenset(self._blocks),
            version=self._version,
            default_limit_usd=self.default_limit_usd,
            on_gap=self._report_gap,
        )

    def _report_gap(self, limit_type: LimitType, entity_id: str) -> None:
        key = (limit_type, entity_id)
        if key in self._reported_gaps:
            return
        self._reported_gaps.add(key)
        logger.warning(
            f"No {limit_type.value} limit configured for {entity_id}, "
            f"treating as unbounded ({self.default_limit_usd})"
        )
