"""
Desk Audit Trail

Every command, fill and risk action that touches desk state leaves an entry
here. The buffer is bounded: once capacity is reached the oldest entries are
dropped.

Entry kinds:
- TRADE:   fills written by the execution ledger
- COMMAND: order submits/cancels, strategy state changes
- RISK:    limit overrides, blocks, pre-trade refusals
- SYSTEM:  lifecycle events (start, stop, reset)
- ACCOUNT: wallet balance changes

TRADE, RISK and COMMAND entries are echoed to the logger at WARNING so they
show up in plain log output as well.

Usage:
    audit = AuditLog(capacity=5000)
    audit.record("EXECUTION_LEDGER", AuditKind.TRADE, "Filled ord_1 25 BTCUSDT @ 96500")

    for entry in audit.entries(kind=AuditKind.TRADE, limit=50):
        print(entry.to_dict())
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class AuditKind(Enum):
    """Audit entry categories."""
    TRADE = "TRADE"
    COMMAND = "COMMAND"
    RISK = "RISK"
    SYSTEM = "SYSTEM"
    ACCOUNT = "ACCOUNT"


# Kinds echoed to the logger
_ECHOED_KINDS = (AuditKind.TRADE, AuditKind.RISK, AuditKind.COMMAND)


@dataclass(frozen=True)
class AuditEntry:
    """A single audit event."""
    timestamp: datetime
    source: str
    user: str
    kind: AuditKind
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "user": self.user,
            "kind": self.kind.value,
            "message": self.message,
            "payload": dict(self.payload),
        }


class AuditLog:
    """Bounded, thread-safe audit buffer. Reads return copies."""

    def __init__(self, capacity: int = 5000):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self.capacity = capacity
        self._entries: Deque[AuditEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(
        self,
        source: str,
        kind: AuditKind,
        message: str,
        user: str = "SYSTEM",
        payload: Optional[Dict[str, Any]] = None
    ) -> AuditEntry:
        """Append an entry and return it."""
        entry = AuditEntry(
            timestamp=datetime.utcnow(),
            source=source,
            user=user,
            kind=kind,
            message=message,
            payload=dict(payload or {}),
        )
        with self._lock:
            self._entries.append(entry)

        if kind in _ECHOED_KINDS:
            logger.warning(f"[AUDIT] [{kind.value}] [USER: {user}] {message}")
        return entry

    def entries(
        self,
        kind: Optional[AuditKind] = None,
        limit: Optional[int] = None
    ) -> List[AuditEntry]:
        """
        Return entries oldest first.

        Args:
            kind: Only entries of this kind (None = all)
            limit: Only the most recent N matching entries (None = all)
        """
        with self._lock:
            selected = [e for e in self._entries if kind is None or e.kind == kind]
        if limit is not None:
            selected = selected[-limit:] if limit > 0 else []
        return selected

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
