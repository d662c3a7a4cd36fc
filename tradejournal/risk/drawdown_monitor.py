"""
Drawdown Monitor - Peak equity tracking and loss-limit breach detection

Implements:
- Per-account peak equity (high water mark), never lowered by a sample
- Trailing (peak to current) or static (initial balance to current) drawdown;
  a breach reset moves the static baseline to the reset peak
- Edge-triggered breach events: one notification per breach
- Sticky breach state, cleared only by an explicit reset
- Limit usage levels (normal, caution, high risk, breached)

Per-account state lives in a DrawdownStateTable owned by the caller and
passed into every evaluation. Samples for one account must arrive in
increasing order; the monitor cannot detect stale samples.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, List, Any, Iterator, Tuple

from ..errors import MalformedInputError
from ..ledger.models import DrawdownMode, Number, to_decimal
from .notifications import NotificationSink, RiskEvent, BreachResetEvent

logger = logging.getLogger(__name__)


class RiskLevel(Enum):
    """How much of the loss limit is used."""
    NORMAL = "normal"         # < 70% of limit
    CAUTION = "caution"       # 70-90%
    HIGH_RISK = "high_risk"   # > 90%
    BREACHED = "breached"     # limit reached


@dataclass
class MonitorConfig:
    """Thresholds for the drawdown monitor."""
    caution_usage_pct: float = 0.70
    high_risk_usage_pct: float = 0.90
    breach_reason: str = "Max drawdown exceeded"


@dataclass
class DrawdownState:
    """Monitoring state of one account."""
    account_id: str
    peak_equity: Decimal
    current_equity: Decimal
    initial_balance: Decimal
    current_drawdown: Decimal = Decimal("0")
    breached: bool = False
    breached_at: Optional[datetime] = None
    breach_reason: Optional[str] = None
    reference_equity: Optional[Decimal] = None  # static-mode baseline after a reset
    samples: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "peak_equity": str(self.peak_equity),
            "current_equity": str(self.current_equity),
            "initial_balance": str(self.initial_balance),
            "current_drawdown": str(self.current_drawdown),
            "breached": self.breached,
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
            "breach_reason": self.breach_reason,
            "reference_equity": str(self.reference_equity) if self.reference_equity is not None else None,
            "samples": self.samples,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class DrawdownStateTable:
    """
    Caller-owned map of account id -> DrawdownState.

    Lifetime is explicit: ``start_monitoring`` when an account becomes
    active with a loss limit, ``stop_monitoring`` when it is deactivated.
    The monitor also creates the entry on an account's first sample.
    """

    def __init__(self):
        self._states: Dict[str, DrawdownState] = {}

    def get(self, account_id: str) -> Optional[DrawdownState]:
        return self._states.get(account_id)

    def start_monitoring(self, account_id: str, initial_balance: Number) -> DrawdownState:
        """Create state for an account. Existing state is kept as is."""
        state = self._states.get(account_id)
        if state is None:
            balance = to_decimal(initial_balance, "initial_balance")
            state = DrawdownState(
                account_id=account_id,
                peak_equity=balance,
                current_equity=balance,
                initial_balance=balance,
            )
            self._states[account_id] = state
            logger.info(f"Started drawdown monitoring for {account_id} at ${balance}")
        return state

    def stop_monitoring(self, account_id: str) -> Optional[DrawdownState]:
        """Discard an account's state. Returns the evicted state, if any."""
        state = self._states.pop(account_id, None)
        if state is not None:
            logger.info(f"Stopped drawdown monitoring for {account_id}")
        return state

    def reset_breach(self, account_id: str, new_peak: Optional[Number] = None) -> DrawdownState:
        """
        Clear a sticky breach after external acknowledgement.

        Args:
            account_id: Account to reset
            new_peak: New peak equity, or the current equity if None. Also
                becomes the baseline for static-mode drawdown.
        """
        state = self._states.get(account_id)
        if state is None:
            raise KeyError(f"Account not monitored: {account_id}")

        peak = to_decimal(new_peak, "new_peak") if new_peak is not None else state.current_equity
        reset = replace(
            state,
            peak_equity=peak,
            reference_equity=peak,
            current_drawdown=max(Decimal("0"), peak - state.current_equity),
            breached=False,
            breached_at=None,
            breach_reason=None,
            last_updated=datetime.now(),
        )
        self._states[account_id] = reset
        logger.info(f"Breach reset for {account_id}, peak equity ${peak}")
        return reset

    def _commit(self, state: DrawdownState):
        self._states[state.account_id] = state

    def account_ids(self) -> List[str]:
        return list(self._states)

    def items(self) -> Iterator[Tuple[str, DrawdownState]]:
        return iter(list(self._states.items()))

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._states

    def __len__(self) -> int:
        return len(self._states)


@dataclass
class DrawdownEvaluation:
    """Result of evaluating one equity sample."""
    account_id: str
    monitored: bool
    current_equity: Decimal
    peak_equity: Optional[Decimal]
    drawdown: Decimal
    max_loss_limit: Optional[Decimal]
    breached: bool
    newly_breached: bool
    limit_usage_pct: float
    level: RiskLevel
    breached_at: Optional[datetime]
    timestamp: datetime

    @classmethod
    def neutral(cls, account_id: str, current_equity: Decimal, timestamp: datetime) -> "DrawdownEvaluation":
        """Evaluation for an account that is not monitored."""
        return cls(
            account_id=account_id,
            monitored=False,
            current_equity=current_equity,
            peak_equity=None,
            drawdown=Decimal("0"),
            max_loss_limit=None,
            breached=False,
            newly_breached=False,
            limit_usage_pct=0.0,
            level=RiskLevel.NORMAL,
            breached_at=None,
            timestamp=timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "monitored": self.monitored,
            "current_equity": str(self.current_equity),
            "peak_equity": str(self.peak_equity) if self.peak_equity is not None else None,
            "drawdown": str(self.drawdown),
            "max_loss_limit": str(self.max_loss_limit) if self.max_loss_limit is not None else None,
            "breached": self.breached,
            "newly_breached": self.newly_breached,
            "limit_usage_pct": f"{self.limit_usage_pct:.2%}",
            "level": self.level.value,
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
            "timestamp": self.timestamp.isoformat(),
        }


class DrawdownMonitor:
    """
    Evaluates equity samples against an account's maximum loss limit.

    Usage:
        states = DrawdownStateTable()
        monitor = DrawdownMonitor(sink=LoggingNotificationSink())

        evaluation = await monitor.evaluate(
            states, account_id, is_active=True, is_prop_firm=True,
            max_loss_limit=Decimal("1000"), current_equity=equity,
            initial_balance=Decimal("10000"),
        )
        if evaluation.newly_breached:
            ...
    """

    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        config: Optional[MonitorConfig] = None,
    ):
        self.sink = sink
        self.config = config or MonitorConfig()

    def _determine_level(self, usage_pct: float, breached: bool) -> RiskLevel:
        if breached:
            return RiskLevel.BREACHED
        if usage_pct > self.config.high_risk_usage_pct:
            return RiskLevel.HIGH_RISK
        if usage_pct > self.config.caution_usage_pct:
            return RiskLevel.CAUTION
        return RiskLevel.NORMAL

    async def evaluate(
        self,
        states: DrawdownStateTable,
        account_id: str,
        is_active: bool,
        is_prop_firm: bool,
        max_loss_limit: Optional[Number],
        current_equity: Number,
        initial_balance: Number,
        timestamp: Optional[datetime] = None,
        mode: DrawdownMode = DrawdownMode.TRAILING,
    ) -> DrawdownEvaluation:
        """
        Apply one equity sample to an account.

        Inactive accounts and accounts without a loss limit get a neutral
        evaluation and no state change. Non-finite equity or balance raises
        MalformedInputError before anything is touched.

        The breach event is delivered before the new state is stored, so a
        failing sink leaves the table unchanged.
        """
        equity = to_decimal(current_equity, "current_equity")
        balance = to_decimal(initial_balance, "initial_balance")
        limit = to_decimal(max_loss_limit, "max_loss_limit") if max_loss_limit is not None else None
        if limit is not None and limit < 0:
            raise MalformedInputError(f"max_loss_limit must not be negative: {limit}")
        now = timestamp or datetime.now()

        if not is_active or not limit:
            return DrawdownEvaluation.neutral(account_id, equity, now)

        previous = states.get(account_id)
        if previous is None:
            previous = DrawdownState(
                account_id=account_id,
                peak_equity=balance,
                current_equity=balance,
                initial_balance=balance,
            )

        peak = max(previous.peak_equity, equity)
        if mode == DrawdownMode.STATIC:
            baseline = previous.reference_equity if previous.reference_equity is not None else balance
            drawdown = max(Decimal("0"), baseline - equity)
        else:
            drawdown = max(Decimal("0"), peak - equity)

        newly_breached = not previous.breached and drawdown >= limit
        state = replace(
            previous,
            peak_equity=peak,
            current_equity=equity,
            current_drawdown=drawdown,
            samples=previous.samples + 1,
            last_updated=now,
        )
        if newly_breached:
            state.breached = True
            state.breached_at = now
            state.breach_reason = self.config.breach_reason

            logger.warning(
                f"Loss limit breached for {account_id}: drawdown ${drawdown} "
                f">= ${limit} (peak ${peak}, equity ${equity})"
            )
            if self.sink:
                await self.sink.notify(RiskEvent(
                    account_id=account_id,
                    drawdown=drawdown,
                    limit=limit,
                    timestamp=now,
                    equity=equity,
                    peak_equity=peak,
                    is_prop_firm=is_prop_firm,
                    reason=self.config.breach_reason,
                ))

        states._commit(state)

        usage_pct = min(1.0, float(drawdown / limit))
        return DrawdownEvaluation(
            account_id=account_id,
            monitored=True,
            current_equity=equity,
            peak_equity=peak,
            drawdown=drawdown,
            max_loss_limit=limit,
            breached=state.breached,
            newly_breached=newly_breached,
            limit_usage_pct=usage_pct,
            level=self._determine_level(usage_pct, state.breached),
            breached_at=state.breached_at,
            timestamp=now,
        )

    async def reset_breach(
        self,
        states: DrawdownStateTable,
        account_id: str,
        new_peak: Optional[Number] = None,
    ) -> DrawdownState:
        """Clear a breach in the table and publish the reset."""
        state = states.reset_breach(account_id, new_peak)
        if self.sink:
            await self.sink.notify(BreachResetEvent(
                account_id=account_id,
                peak_equity=state.peak_equity,
                timestamp=state.last_updated or datetime.now(),
            ))
        return state
