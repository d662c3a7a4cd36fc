"""
Prop-Firm Challenge Tracking

Phases:
    evaluating -> failed    loss limit breached (checked first)
    evaluating -> passed    profit target reached without a breach
    passed     -> funded    external promotion only

failed and funded are terminal. passed ends the evaluation stage; only
``promote_to_funded`` moves it on. Once an account leaves evaluating,
later samples return the stored phase unchanged even if equity recovers.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, List, Any, Iterable, Iterator, Tuple

from ..errors import InvalidPhaseTransitionError
from ..ledger.models import AccountConfig, TradeRecord, Number, to_decimal
from .notifications import NotificationSink, PhaseChangeEvent

logger = logging.getLogger(__name__)


class ChallengePhase(Enum):
    EVALUATING = "evaluating"
    PASSED = "passed"
    FAILED = "failed"
    FUNDED = "funded"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengePhase.FAILED, ChallengePhase.FUNDED)


@dataclass
class ChallengeState:
    account_id: str
    phase: ChallengePhase = ChallengePhase.EVALUATING
    changed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "phase": self.phase.value,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }


class ChallengeStateTable:
    """Caller-owned map of account id -> ChallengeState."""

    def __init__(self):
        self._states: Dict[str, ChallengeState] = {}

    def get(self, account_id: str) -> Optional[ChallengeState]:
        return self._states.get(account_id)

    def phase_of(self, account_id: str) -> Optional[ChallengePhase]:
        state = self._states.get(account_id)
        return state.phase if state else None

    def start_tracking(self, account_id: str) -> ChallengeState:
        state = self._states.get(account_id)
        if state is None:
            state = ChallengeState(account_id=account_id, changed_at=datetime.now())
            self._states[account_id] = state
            logger.info(f"Started challenge tracking for {account_id}")
        return state

    def stop_tracking(self, account_id: str) -> Optional[ChallengeState]:
        return self._states.pop(account_id, None)

    def _set_phase(self, account_id: str, phase: ChallengePhase, when: datetime):
        self._states[account_id] = ChallengeState(account_id=account_id, phase=phase, changed_at=when)

    def items(self) -> Iterator[Tuple[str, ChallengeState]]:
        return iter(list(self._states.items()))

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._states

    def __len__(self) -> int:
        return len(self._states)


@dataclass
class ChallengeProgress:
    """Progress of a challenge, as fractions (0.5 = 50%)."""
    account_id: str
    current_pnl: Decimal
    target_equity: Optional[Decimal]
    profit_progress_pct: float
    drawdown_progress_pct: float
    trading_days_completed: int
    trading_days_required: Optional[int]
    trading_days_progress_pct: Optional[float]

    @property
    def trading_days_met(self) -> bool:
        return not self.trading_days_required or self.trading_days_completed >= self.trading_days_required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "current_pnl": str(self.current_pnl),
            "target_equity": str(self.target_equity) if self.target_equity is not None else None,
            "profit_progress_pct": f"{self.profit_progress_pct:.1%}",
            "drawdown_progress_pct": f"{self.drawdown_progress_pct:.1%}",
            "trading_days_completed": self.trading_days_completed,
            "trading_days_required": self.trading_days_required,
        }


def count_trading_days(account_id: str, trades: Iterable[TradeRecord]) -> int:
    """Distinct calendar days on which the account entered a trade."""
    days = {
        t.entry_date.date()
        for t in trades
        if t.account_id == account_id and t.entry_date is not None
    }
    return len(days)


def compute_progress(
    config: AccountConfig,
    current_equity: Number,
    current_drawdown: Number = Decimal("0"),
    trading_days: int = 0,
) -> ChallengeProgress:
    """Progress toward the profit target, loss limit and trading-day minimum."""
    equity = to_decimal(current_equity, "current_equity")
    drawdown = to_decimal(current_drawdown, "current_drawdown")
    pnl = equity - config.initial_balance

    profit_pct = 0.0
    if config.profit_target == 0:
        profit_pct = 1.0 if pnl >= 0 else 0.0
    elif config.profit_target is not None:
        profit_pct = max(0.0, min(1.0, float(pnl / config.profit_target)))

    drawdown_pct = 0.0
    if config.max_loss_limit:
        drawdown_pct = min(1.0, float(abs(drawdown) / config.max_loss_limit))

    days_pct = None
    if config.minimum_trading_days:
        days_pct = min(1.0, trading_days / config.minimum_trading_days)

    return ChallengeProgress(
        account_id=config.account_id,
        current_pnl=pnl,
        target_equity=config.target_equity,
        profit_progress_pct=profit_pct,
        drawdown_progress_pct=drawdown_pct,
        trading_days_completed=trading_days,
        trading_days_required=config.minimum_trading_days,
        trading_days_progress_pct=days_pct,
    )


class ChallengeTracker:
    """
    Derives the challenge phase of prop-firm accounts.

    Call after the DrawdownMonitor has evaluated the same sample and pass
    its breach flag.

    Usage:
        phases = ChallengeStateTable()
        tracker = ChallengeTracker(sink=sink)

        phase = await tracker.evaluate(
            phases, config.account_id, equity, config,
            drawdown_breached=evaluation.breached,
        )
    """

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink

    async def _transition(
        self,
        phases: ChallengeStateTable,
        account_id: str,
        old: ChallengePhase,
        new: ChallengePhase,
        equity: Optional[Decimal],
        when: datetime,
    ):
        if self.sink:
            await self.sink.notify(PhaseChangeEvent(
                account_id=account_id,
                old_phase=old.value,
                new_phase=new.value,
                equity=equity,
                timestamp=when,
            ))
        phases._set_phase(account_id, new, when)
        logger.info(f"Challenge {account_id}: {old.value} -> {new.value}")

    async def evaluate(
        self,
        phases: ChallengeStateTable,
        account_id: str,
        current_equity: Number,
        config: AccountConfig,
        drawdown_breached: bool,
        trading_days: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[ChallengePhase]:
        """
        Evaluate one sample and return the account's phase.

        Returns None when tracking does not apply (not a prop-firm account,
        or no profit target configured).
        """
        if not config.is_prop_firm or config.profit_target is None:
            return None

        equity = to_decimal(current_equity, "current_equity")
        now = timestamp or datetime.now()
        current = phases.phase_of(account_id) or ChallengePhase.EVALUATING

        if current != ChallengePhase.EVALUATING:
            return current

        if account_id not in phases:
            phases.start_tracking(account_id)

        if drawdown_breached:
            await self._transition(phases, account_id, current, ChallengePhase.FAILED, equity, now)
            return ChallengePhase.FAILED

        target_met = equity - config.initial_balance >= config.profit_target
        days_met = (
            not config.minimum_trading_days
            or (trading_days or 0) >= config.minimum_trading_days
        )
        if target_met and days_met:
            await self._transition(phases, account_id, current, ChallengePhase.PASSED, equity, now)
            return ChallengePhase.PASSED

        return ChallengePhase.EVALUATING

    async def promote_to_funded(self, phases: ChallengeStateTable, account_id: str) -> ChallengePhase:
        """Promote a passed challenge to funded. Driven by an external ops action."""
        current = phases.phase_of(account_id)
        if current != ChallengePhase.PASSED:
            raise InvalidPhaseTransitionError(
                f"Cannot promote {account_id} from {current.value if current else 'untracked'}",
                {"account_id": account_id},
            )
        await self._transition(phases, account_id, current, ChallengePhase.FUNDED, None, datetime.now())
        return ChallengePhase.FUNDED
