"""
Shared fixtures for the desk risk core tests.

The demo desk is built with fill_delay_seconds=0 so MARKET fills land inline
and every test is deterministic without an event loop.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from deskrisk.audit import AuditLog
from deskrisk.config import DeskConfig
from deskrisk.demo import build_demo_desk, demo_limit_book, seed_positions, seed_prices
from deskrisk.execution import ExecutionLedger
from deskrisk.market import PriceCache
from deskrisk.portfolio import AccountRegistry, PortfolioValuator


@pytest.fixture
def audit():
    return AuditLog()


@pytest.fixture
def prices():
    cache = PriceCache()
    seed_prices(cache)
    return cache


@pytest.fixture
def limit_book(audit):
    return demo_limit_book(audit)


@pytest.fixture
def ledger(audit):
    return ExecutionLedger(audit=audit, fill_delay_seconds=0, seed=7)


@pytest.fixture
def seeded_ledger(audit):
    return ExecutionLedger(audit=audit, fill_delay_seconds=0, seed=7, seed_positions=seed_positions())


@pytest.fixture
def accounts(audit):
    return AccountRegistry({"PROP_DESK_MAIN": Decimal("1000000"),
                            "ARB_STRAT_01": Decimal("1000000")}, audit=audit)


@pytest.fixture
def valuator(seeded_ledger, prices, accounts):
    return PortfolioValuator(seeded_ledger, prices, accounts)


@pytest.fixture
def live_positions(valuator):
    """The demo book valued at the demo prices."""
    return list(valuator.tick().positions)


@pytest.fixture
def desk():
    desk = build_demo_desk(DeskConfig(fill_delay_seconds=0, slippage_seed=7))
    desk.tick()
    yield desk
    desk.close()
