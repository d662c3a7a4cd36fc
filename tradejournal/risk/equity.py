"""
Equity Aggregation

Turns an account's trades and cash-flow transactions into current equity:

    equity = initial_balance + sum(closed trade pnl) + sum(signed cash flows)

Deposits and payouts add, withdrawals subtract. Evaluation fees,
commissions and "other" transactions are informational and never change
equity. The sum is recomputed from the full record set on every call, so
amended trades and corrected transactions are always reflected.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Any, Optional

from ..ledger.models import AccountConfig, LedgerSnapshot, TradeRecord, TransactionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EquitySnapshot:
    """Equity of one account with its breakdown."""
    account_id: str
    equity: Decimal
    initial_balance: Decimal
    trade_pnl: Decimal
    net_cash_flow: Decimal
    excluded_cash_flow: Decimal  # informational kinds, not part of equity
    closed_trade_count: int
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def total_pnl(self) -> Decimal:
        return self.equity - self.initial_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "equity": str(self.equity),
            "initial_balance": str(self.initial_balance),
            "trade_pnl": str(self.trade_pnl),
            "net_cash_flow": str(self.net_cash_flow),
            "excluded_cash_flow": str(self.excluded_cash_flow),
            "closed_trade_count": self.closed_trade_count,
            "timestamp": self.timestamp.isoformat(),
        }


def compute_snapshot(
    config: AccountConfig,
    trades: Iterable[TradeRecord],
    transactions: Iterable[TransactionRecord],
    timestamp: Optional[datetime] = None,
) -> EquitySnapshot:
    """
    Compute equity with its breakdown.

    Records belonging to other accounts are ignored, so a whole user's
    ledger can be passed in.
    """
    trade_pnl = Decimal("0")
    closed_trades = 0
    for trade in trades:
        if trade.account_id != config.account_id or not trade.contributes_to_equity:
            continue
        trade_pnl += trade.pnl
        closed_trades += 1

    net_cash_flow = Decimal("0")
    excluded = Decimal("0")
    for tx in transactions:
        if tx.account_id != config.account_id:
            continue
        if tx.kind.affects_equity:
            net_cash_flow += tx.signed_amount
        else:
            excluded += tx.amount

    return EquitySnapshot(
        account_id=config.account_id,
        equity=config.initial_balance + trade_pnl + net_cash_flow,
        initial_balance=config.initial_balance,
        trade_pnl=trade_pnl,
        net_cash_flow=net_cash_flow,
        excluded_cash_flow=excluded,
        closed_trade_count=closed_trades,
        timestamp=timestamp or datetime.now(),
    )


def compute_equity(
    config: AccountConfig,
    trades: Iterable[TradeRecord],
    transactions: Iterable[TransactionRecord],
) -> Decimal:
    """Current equity of an account. An account with no activity equals its initial balance."""
    return compute_snapshot(config, trades, transactions).equity


def compute_account_equities(
    configs: Iterable[AccountConfig],
    ledger: LedgerSnapshot,
) -> Dict[str, Decimal]:
    """Equity per account id, all computed from the same ledger read."""
    equities = {}
    for config in configs:
        equities[config.account_id] = compute_equity(config, ledger.trades, ledger.transactions)
    logger.debug(f"Computed equity for {len(equities)} accounts of {ledger.user_id}")
    return equities
