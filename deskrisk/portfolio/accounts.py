"""
Account Registry - wallet balances that back desk equity

Equity = sum of wallet balances + unrealized PnL. Balances are set by
account-sync collaborators; each change is audited.
"""

import logging
import threading
from decimal import Decimal
from typing import Dict, Mapping, Optional

from ..audit import AuditKind, AuditLog

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "ACCOUNT_REGISTRY"


class AccountRegistry:
    """Thread-safe map of account id -> wallet balance (USD)."""

    def __init__(
        self,
        balances: Optional[Mapping[str, Decimal]] = None,
        audit: Optional[AuditLog] = None
    ):
        self.audit = audit if audit is not None else AuditLog()
        self._lock = threading.Lock()
        self._balances: Dict[str, Decimal] = {
            account: Decimal(str(amount)) for account, amount in (balances or {}).items()
        }

    def set_balance(self, account_id: str, amount: Decimal, user: str = "SYSTEM") -> None:
        """
        Set the wallet balance for an account (creates it if new).

        Used for state synchronization, not for trading.
        """
        amount = Decimal(str(amount))
        with self._lock:
            old = self._balances.get(account_id)
            self._balances[account_id] = amount

        self.audit.record(
            AUDIT_SOURCE,
            AuditKind.ACCOUNT,
            f"Account {account_id} balance {old if old is not None else 'NEW'} -> {amount}",
            user=user,
            payload={"account_id": account_id, "old": str(old) if old is not None else None,
                     "new": str(amount)},
        )
        logger.debug(f"Balance sync: {account_id} {old} -> {amount}")

    def get_balance(self, account_id: str) -> Decimal:
        with self._lock:
            return self._balances.get(account_id, Decimal("0"))

    def get_all_balances(self) -> Dict[str, Decimal]:
        with self._lock:
            return dict(self._balances)

    def total_wallet_balance(self) -> Decimal:
        with self._lock:
            return sum(self._balances.values(), Decimal("0"))
