"""
Ledger Models - Trades, cash-flow transactions and account configuration

Records are immutable facts supplied by the account/ledger storage.
Amounts are carried as Decimal; anything non-finite is rejected on
construction with MalformedInputError.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Dict, List, Any, Union

from ..errors import MalformedInputError

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number, field_name: str = "value") -> Decimal:
    """Convert a number to a finite Decimal or raise MalformedInputError."""
    if isinstance(value, bool):
        raise MalformedInputError(f"{field_name} must be a number, got bool", {"field": field_name})
    if isinstance(value, float) and not math.isfinite(value):
        raise MalformedInputError(f"{field_name} is not finite: {value}", {"field": field_name})
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise MalformedInputError(f"{field_name} is not a number: {value!r}", {"field": field_name})
    if not result.is_finite():
        raise MalformedInputError(f"{field_name} is not finite: {value}", {"field": field_name})
    return result


def to_optional_magnitude(value: Optional[Number], field_name: str) -> Optional[Decimal]:
    """Limits and targets: None stays None, negative values are malformed."""
    if value is None:
        return None
    result = to_decimal(value, field_name)
    if result < 0:
        raise MalformedInputError(f"{field_name} must not be negative: {result}", {"field": field_name})
    return result


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise MalformedInputError(f"Invalid timestamp: {value!r}")


class TradeStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class TransactionKind(Enum):
    """Cash-flow kinds. Only deposit, payout and withdrawal move equity."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYOUT = "payout"
    EVALUATION_FEE = "evaluation_fee"
    COMMISSION = "commission"
    OTHER = "other"

    @property
    def affects_equity(self) -> bool:
        return self in EQUITY_CREDIT_KINDS or self in EQUITY_DEBIT_KINDS


EQUITY_CREDIT_KINDS = frozenset({TransactionKind.DEPOSIT, TransactionKind.PAYOUT})
EQUITY_DEBIT_KINDS = frozenset({TransactionKind.WITHDRAWAL})


class DrawdownMode(Enum):
    """How drawdown is measured against the loss limit."""
    TRAILING = "trailing"   # peak equity to current equity
    STATIC = "static"       # initial balance to current equity


@dataclass(frozen=True)
class TradeRecord:
    """A trade belonging to exactly one account."""
    trade_id: str
    account_id: str
    pnl: Optional[Decimal] = None
    status: TradeStatus = TradeStatus.CLOSED
    entry_date: Optional[datetime] = None

    def __post_init__(self):
        if self.pnl is not None:
            object.__setattr__(self, "pnl", to_decimal(self.pnl, "pnl"))
        if not isinstance(self.status, TradeStatus):
            object.__setattr__(self, "status", TradeStatus(self.status))

    @property
    def contributes_to_equity(self) -> bool:
        return self.status == TradeStatus.CLOSED and self.pnl is not None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TradeRecord":
        """Build from a storage row (``trading_account_id``, ``pnl``, ...)."""
        pnl = row.get("pnl")
        status = row.get("status")
        if status is None:
            # Rows without an explicit status are closed once a pnl is recorded
            status = TradeStatus.CLOSED if pnl is not None else TradeStatus.OPEN
        return cls(
            trade_id=str(row.get("id", "")),
            account_id=str(row.get("trading_account_id") or row["account_id"]),
            pnl=pnl,
            status=TradeStatus(status) if not isinstance(status, TradeStatus) else status,
            entry_date=_parse_timestamp(row.get("entry_date")),
        )


@dataclass(frozen=True)
class TransactionRecord:
    """A cash-flow transaction. The amount is a positive magnitude; the kind implies the sign."""
    transaction_id: str
    account_id: str
    amount: Decimal
    kind: TransactionKind
    created_at: Optional[datetime] = None

    def __post_init__(self):
        amount = to_decimal(self.amount, "amount")
        if amount < 0:
            raise MalformedInputError(
                f"Transaction {self.transaction_id} has negative amount {amount}",
                {"transaction_id": self.transaction_id},
            )
        object.__setattr__(self, "amount", amount)
        if not isinstance(self.kind, TransactionKind):
            object.__setattr__(self, "kind", TransactionKind(self.kind))

    @property
    def signed_amount(self) -> Decimal:
        """Effect on equity: +amount, -amount, or zero for informational kinds."""
        if self.kind in EQUITY_CREDIT_KINDS:
            return self.amount
        if self.kind in EQUITY_DEBIT_KINDS:
            return -self.amount
        return Decimal("0")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TransactionRecord":
        kind = row.get("transaction_type") or row.get("kind")
        try:
            kind = TransactionKind(kind)
        except ValueError:
            raise MalformedInputError(f"Unknown transaction type: {kind!r}", {"row": row})
        return cls(
            transaction_id=str(row.get("id", "")),
            account_id=str(row.get("trading_account_id") or row["account_id"]),
            amount=row["amount"],
            kind=kind,
            created_at=_parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True)
class AccountConfig:
    """
    Per-account configuration owned by account management.

    ``max_loss_limit`` is present only when risk monitoring applies and
    ``profit_target`` only for prop-firm challenge tracking. The profit
    target is the required gain over the initial balance.
    """
    account_id: str
    initial_balance: Decimal
    is_active: bool = True
    is_prop_firm: bool = False
    max_loss_limit: Optional[Decimal] = None
    profit_target: Optional[Decimal] = None
    minimum_trading_days: Optional[int] = None
    drawdown_mode: DrawdownMode = DrawdownMode.TRAILING
    name: str = ""
    currency: str = "USD"

    def __post_init__(self):
        object.__setattr__(self, "initial_balance", to_decimal(self.initial_balance, "initial_balance"))
        object.__setattr__(self, "max_loss_limit", to_optional_magnitude(self.max_loss_limit, "max_loss_limit"))
        object.__setattr__(self, "profit_target", to_optional_magnitude(self.profit_target, "profit_target"))
        if self.minimum_trading_days is not None and self.minimum_trading_days < 0:
            raise MalformedInputError("minimum_trading_days must not be negative")
        if not isinstance(self.drawdown_mode, DrawdownMode):
            object.__setattr__(self, "drawdown_mode", DrawdownMode(self.drawdown_mode))

    @property
    def target_equity(self) -> Optional[Decimal]:
        if self.profit_target is None:
            return None
        return self.initial_balance + self.profit_target

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AccountConfig":
        """Build from a ``trading_accounts`` row."""
        is_prop_firm = bool(row.get("is_prop_firm")) or row.get("account_type") == "prop firm"
        return cls(
            account_id=str(row["id"]),
            initial_balance=row.get("initial_balance", 0),
            is_active=bool(row.get("is_active", True)),
            is_prop_firm=is_prop_firm,
            max_loss_limit=row.get("max_loss_limit"),
            profit_target=row.get("profit_target"),
            minimum_trading_days=row.get("minimum_trading_days"),
            drawdown_mode=DrawdownMode(row.get("drawdown_type") or "trailing"),
            name=row.get("name", ""),
            currency=row.get("currency", "USD"),
        )


@dataclass(frozen=True)
class LedgerSnapshot:
    """All trades and transactions for a user, read under one logical fetch."""
    user_id: str
    trades: List[TradeRecord] = field(default_factory=list)
    transactions: List[TransactionRecord] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=datetime.now)

    def trades_for(self, account_id: str) -> List[TradeRecord]:
        return [t for t in self.trades if t.account_id == account_id]

    def transactions_for(self, account_id: str) -> List[TransactionRecord]:
        return [t for t in self.transactions if t.account_id == account_id]
