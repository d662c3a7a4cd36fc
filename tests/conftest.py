"""
Pytest configuration and fixtures for the trading journal risk engine tests.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from tradejournal.ledger.models import (
    AccountConfig, TradeRecord, TradeStatus, TransactionRecord, TransactionKind,
)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires ledger credentials)"
    )


@pytest.fixture
def account_config():
    """Plain account with a loss limit."""
    return AccountConfig(
        account_id="acc-1",
        initial_balance=Decimal("10000"),
        is_active=True,
        is_prop_firm=False,
        max_loss_limit=Decimal("1000"),
        name="Personal",
    )


@pytest.fixture
def prop_firm_config():
    """Prop-firm challenge: 10,000 balance, 1,000 target, 1,000 loss limit."""
    return AccountConfig(
        account_id="prop-1",
        initial_balance=Decimal("10000"),
        is_active=True,
        is_prop_firm=True,
        max_loss_limit=Decimal("1000"),
        profit_target=Decimal("1000"),
        name="FundingPips 10K",
    )


@pytest.fixture
def sample_trades():
    """Closed trades +500, -200, +300 and one open trade."""
    return [
        TradeRecord("t1", "acc-1", Decimal("500"), TradeStatus.CLOSED, datetime(2026, 3, 2, 9, 30)),
        TradeRecord("t2", "acc-1", Decimal("-200"), TradeStatus.CLOSED, datetime(2026, 3, 2, 14, 0)),
        TradeRecord("t3", "acc-1", Decimal("300"), TradeStatus.CLOSED, datetime(2026, 3, 3, 10, 15)),
        TradeRecord("t4", "acc-1", None, TradeStatus.OPEN, datetime(2026, 3, 4, 11, 0)),
    ]


@pytest.fixture
def sample_transactions():
    """Deposit 1,000, withdrawal 300, commission 50."""
    return [
        TransactionRecord("x1", "acc-1", Decimal("1000"), TransactionKind.DEPOSIT),
        TransactionRecord("x2", "acc-1", Decimal("300"), TransactionKind.WITHDRAWAL),
        TransactionRecord("x3", "acc-1", Decimal("50"), TransactionKind.COMMISSION),
    ]
