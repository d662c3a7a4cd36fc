"""
Account Risk Service

Drives the engine for a set of users:
- One ledger read per refresh, equity recomputed for every account
- Drawdown evaluation, then challenge evaluation for prop-firm accounts
- Stale samples discarded by sequence number before they reach the monitor
- Monitoring state evicted when an account is deactivated or loses its
  loss limit, and forgotten entirely when the account is removed
- Optional periodic polling loop

Fetch failures propagate to the caller and leave all state untouched.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Any, Iterable, Set, Tuple

from ..errors import LedgerFetchError
from ..ledger.fetcher import LedgerFetcher, AccountConfigProvider
from ..ledger.models import AccountConfig, LedgerSnapshot
from ..risk.challenge import (
    ChallengePhase,
    ChallengeProgress,
    ChallengeStateTable,
    ChallengeTracker,
    compute_progress,
    count_trading_days,
)
from ..risk.drawdown_monitor import (
    DrawdownEvaluation,
    DrawdownMonitor,
    DrawdownState,
    DrawdownStateTable,
    MonitorConfig,
)
from ..risk.equity import EquitySnapshot, compute_snapshot
from ..risk.notifications import NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class AccountRiskReport:
    """Everything derived for one account from one ledger read."""
    account_id: str
    sequence: int
    snapshot: EquitySnapshot
    drawdown: DrawdownEvaluation
    phase: Optional[ChallengePhase] = None
    progress: Optional[ChallengeProgress] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def equity(self):
        return self.snapshot.equity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "sequence": self.sequence,
            "equity": self.snapshot.to_dict(),
            "drawdown": self.drawdown.to_dict(),
            "phase": self.phase.value if self.phase else None,
            "progress": self.progress.to_dict() if self.progress else None,
            "timestamp": self.timestamp.isoformat(),
        }


class AccountRiskService:
    """
    Caller-side orchestration of the equity and risk engine.

    Usage:
        service = AccountRiskService(ledger, ledger, sink=LoggingNotificationSink())

        # On demand, e.g. after a trade was saved
        reports = await service.refresh(user_id)

        # Or poll
        await service.start([user_id])
        ...
        await service.stop()
    """

    def __init__(
        self,
        fetcher: LedgerFetcher,
        accounts: AccountConfigProvider,
        sink: Optional[NotificationSink] = None,
        monitor_config: Optional[MonitorConfig] = None,
        poll_interval: int = 60,
    ):
        self.fetcher = fetcher
        self.accounts = accounts
        self.sink = sink
        self.poll_interval = poll_interval

        self.monitor = DrawdownMonitor(sink=sink, config=monitor_config)
        self.tracker = ChallengeTracker(sink=sink)

        # Caller-owned evaluator state
        self.drawdown_states = DrawdownStateTable()
        self.challenge_states = ChallengeStateTable()

        self._sequence = itertools.count(1)
        self._last_applied: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._reports: Dict[str, AccountRiskReport] = {}
        # user id -> (sequence of the account list, account ids in it)
        self._user_accounts: Dict[str, Tuple[int, Set[str]]] = {}

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._user_ids: List[str] = []

    def next_sequence(self) -> int:
        return next(self._sequence)

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    async def refresh(self, user_id: str) -> List[AccountRiskReport]:
        """
        Read the user's ledger once and evaluate every account.

        Raises:
            LedgerFetchError: the ledger could not be read; nothing is evaluated.
        """
        sequence = self.next_sequence()
        configs = await self.accounts.get_accounts(user_id)
        ledger = await self.fetcher.fetch(user_id, [c.account_id for c in configs])
        await self._track_accounts(user_id, configs, sequence)

        reports = []
        for config in configs:
            report = await self.apply_sample(config, ledger, sequence, user_id=user_id)
            if report is not None:
                reports.append(report)
        return reports

    async def apply_sample(
        self,
        config: AccountConfig,
        ledger: LedgerSnapshot,
        sequence: int,
        user_id: Optional[str] = None,
    ) -> Optional[AccountRiskReport]:
        """
        Evaluate one account against a ledger read.

        Returns None when a newer sample has already been applied for the
        account, or, given the owning user, when the account is no longer
        in the user's latest account list.
        """
        account_id = config.account_id
        async with self._lock_for(account_id):
            if user_id is not None and not self._is_listed(user_id, account_id, sequence):
                logger.debug(f"Discarding sample {sequence} for unlisted account {account_id}")
                return None

            last = self._last_applied.get(account_id, 0)
            if sequence <= last:
                logger.warning(
                    f"Discarding stale sample {sequence} for {account_id} (last applied {last})"
                )
                return None

            snapshot = compute_snapshot(config, ledger.trades, ledger.transactions)

            if not config.is_active:
                self._evict(account_id)
            elif config.max_loss_limit:
                self.drawdown_states.start_monitoring(account_id, config.initial_balance)
            elif self.drawdown_states.stop_monitoring(account_id) is not None:
                logger.info(f"Loss limit removed for {account_id}, monitoring state discarded")

            evaluation = await self.monitor.evaluate(
                self.drawdown_states,
                account_id,
                is_active=config.is_active,
                is_prop_firm=config.is_prop_firm,
                max_loss_limit=config.max_loss_limit,
                current_equity=snapshot.equity,
                initial_balance=config.initial_balance,
                timestamp=snapshot.timestamp,
                mode=config.drawdown_mode,
            )

            phase = None
            progress = None
            if config.is_active and config.is_prop_firm:
                trading_days = count_trading_days(account_id, ledger.trades)
                phase = await self.tracker.evaluate(
                    self.challenge_states,
                    account_id,
                    snapshot.equity,
                    config,
                    drawdown_breached=evaluation.breached,
                    trading_days=trading_days,
                    timestamp=snapshot.timestamp,
                )
                progress = compute_progress(config, snapshot.equity, evaluation.drawdown, trading_days)

            self._last_applied[account_id] = sequence
            report = AccountRiskReport(
                account_id=account_id,
                sequence=sequence,
                snapshot=snapshot,
                drawdown=evaluation,
                phase=phase,
                progress=progress,
            )
            self._reports[account_id] = report
            return report

    async def _track_accounts(self, user_id: str, configs: List[AccountConfig], sequence: int):
        """
        Record the user's latest account list and forget accounts removed
        from it. An older list than the one recorded is ignored.
        """
        known = self._user_accounts.get(user_id)
        if known is not None and known[0] > sequence:
            return

        ids = {c.account_id for c in configs}
        self._user_accounts[user_id] = (sequence, ids)
        if known is not None:
            for account_id in known[1] - ids:
                await self._forget(account_id)

    def _is_listed(self, user_id: str, account_id: str, sequence: int) -> bool:
        listed = self._user_accounts.get(user_id)
        if listed is None or account_id not in listed[1]:
            return False
        # A forgotten account comes back only with samples from the list that re-added it
        return account_id in self._last_applied or sequence >= listed[0]

    def _evict(self, account_id: str):
        if self.drawdown_states.stop_monitoring(account_id) is not None:
            logger.info(f"Account {account_id} deactivated, monitoring state discarded")
        self.challenge_states.stop_tracking(account_id)

    async def _forget(self, account_id: str):
        """Drop everything held for an account that was removed."""
        lock = self._lock_for(account_id)
        async with lock:
            self._evict(account_id)
            self._last_applied.pop(account_id, None)
            self._reports.pop(account_id, None)
        if self._locks.get(account_id) is lock:
            del self._locks[account_id]
        logger.info(f"Account {account_id} removed, state forgotten")

    async def reset_breach(self, account_id: str) -> DrawdownState:
        """Clear a breach after it was acknowledged."""
        async with self._lock_for(account_id):
            return await self.monitor.reset_breach(self.drawdown_states, account_id)

    async def promote_to_funded(self, account_id: str) -> ChallengePhase:
        """Promote a passed challenge to funded."""
        async with self._lock_for(account_id):
            phase = await self.tracker.promote_to_funded(self.challenge_states, account_id)
            report = self._reports.get(account_id)
            if report is not None:
                report.phase = phase
            return phase

    # Query methods
    def get_report(self, account_id: str) -> Optional[AccountRiskReport]:
        return self._reports.get(account_id)

    def get_reports(self) -> Dict[str, AccountRiskReport]:
        return self._reports.copy()

    def get_equities(self) -> Dict[str, Any]:
        return {account_id: r.snapshot.equity for account_id, r in self._reports.items()}

    # Polling
    async def start(self, user_ids: Iterable[str]):
        """Start periodic refreshes for the given users."""
        if self._running:
            return

        self._user_ids = list(user_ids)
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Risk polling started for {len(self._user_ids)} users every {self.poll_interval}s")

    async def stop(self):
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Risk polling stopped")

    async def _poll_loop(self):
        while self._running:
            for user_id in self._user_ids:
                try:
                    await self.refresh(user_id)
                except LedgerFetchError as e:
                    logger.error(f"Ledger fetch failed for {user_id}: {e}")
                except Exception as e:
                    logger.exception(f"Risk refresh failed for {user_id}: {e}")

            await asyncio.sleep(self.poll_interval)
