"""
Monitoring module for the trading journal.

Components:
- AccountRiskService: Refreshes equity, drawdown and challenge state per account
"""

from .service import (
    AccountRiskService,
    AccountRiskReport,
)

__all__ = [
    "AccountRiskService",
    "AccountRiskReport",
]
