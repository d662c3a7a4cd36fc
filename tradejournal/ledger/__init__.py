"""
Ledger module - Records consumed by the equity and risk engine

Components:
- TradeRecord / TransactionRecord / AccountConfig: immutable input facts
- LedgerSnapshot: one consistent read of a user's ledger
- LedgerFetcher / AccountConfigProvider: storage collaborator interfaces
- RestLedgerClient: HTTP ledger backend
- InMemoryLedger: in-process ledger
"""

from .models import (
    TradeRecord,
    TradeStatus,
    TransactionRecord,
    TransactionKind,
    AccountConfig,
    DrawdownMode,
    LedgerSnapshot,
    EQUITY_CREDIT_KINDS,
    EQUITY_DEBIT_KINDS,
    to_decimal,
)

from .fetcher import (
    LedgerFetcher,
    AccountConfigProvider,
    RestLedgerClient,
    RestLedgerConfig,
    InMemoryLedger,
)

__all__ = [
    "TradeRecord",
    "TradeStatus",
    "TransactionRecord",
    "TransactionKind",
    "AccountConfig",
    "DrawdownMode",
    "LedgerSnapshot",
    "EQUITY_CREDIT_KINDS",
    "EQUITY_DEBIT_KINDS",
    "to_decimal",
    "LedgerFetcher",
    "AccountConfigProvider",
    "RestLedgerClient",
    "RestLedgerConfig",
    "InMemoryLedger",
]
