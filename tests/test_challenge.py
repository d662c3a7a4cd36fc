"""
Tests for prop-firm challenge tracking.
"""

import pytest
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from tradejournal.errors import InvalidPhaseTransitionError
from tradejournal.ledger.models import AccountConfig, TradeRecord
from tradejournal.risk.challenge import (
    ChallengePhase, ChallengeStateTable, ChallengeTracker,
    compute_progress, count_trading_days,
)
from tradejournal.risk.notifications import RecordingNotificationSink, PhaseChangeEvent


@pytest.fixture
def sink():
    return RecordingNotificationSink()


@pytest.fixture
def tracker(sink):
    return ChallengeTracker(sink=sink)


@pytest.fixture
def phases():
    return ChallengeStateTable()


class TestChallengeTracker:
    """Phase state machine."""

    @pytest.mark.asyncio
    async def test_starts_evaluating(self, tracker, phases, prop_firm_config):
        phase = await tracker.evaluate(phases, "prop-1", Decimal("10400"), prop_firm_config, False)

        assert phase == ChallengePhase.EVALUATING
        assert phases.phase_of("prop-1") == ChallengePhase.EVALUATING

    @pytest.mark.asyncio
    async def test_passes_at_profit_target(self, tracker, phases, sink, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("10600"), prop_firm_config, False)
        phase = await tracker.evaluate(phases, "prop-1", Decimal("11050"), prop_firm_config, False)

        assert phase == ChallengePhase.PASSED
        assert len(sink.events) == 1
        event = sink.events[0]
        assert isinstance(event, PhaseChangeEvent)
        assert (event.old_phase, event.new_phase) == ("evaluating", "passed")

    @pytest.mark.asyncio
    async def test_fails_on_breach(self, tracker, phases, prop_firm_config):
        phase = await tracker.evaluate(phases, "prop-1", Decimal("8900"), prop_firm_config, True)
        assert phase == ChallengePhase.FAILED

    @pytest.mark.asyncio
    async def test_failed_wins_when_target_and_breach_coincide(self, tracker, phases, prop_firm_config):
        phase = await tracker.evaluate(phases, "prop-1", Decimal("11500"), prop_firm_config, True)

        assert phase == ChallengePhase.FAILED
        assert phases.phase_of("prop-1") != ChallengePhase.PASSED

    @pytest.mark.asyncio
    async def test_failed_is_terminal(self, tracker, phases, sink, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("8900"), prop_firm_config, True)
        phase = await tracker.evaluate(phases, "prop-1", Decimal("12000"), prop_firm_config, False)

        assert phase == ChallengePhase.FAILED
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_passed_is_not_reevaluated(self, tracker, phases, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("11000"), prop_firm_config, False)
        phase = await tracker.evaluate(phases, "prop-1", Decimal("8500"), prop_firm_config, True)

        assert phase == ChallengePhase.PASSED

    @pytest.mark.asyncio
    async def test_not_applicable_for_regular_accounts(self, tracker, phases, account_config):
        phase = await tracker.evaluate(phases, "acc-1", Decimal("20000"), account_config, False)

        assert phase is None
        assert len(phases) == 0

    @pytest.mark.asyncio
    async def test_not_applicable_without_profit_target(self, tracker, phases, prop_firm_config):
        config = replace(prop_firm_config, profit_target=None)
        phase = await tracker.evaluate(phases, "prop-1", Decimal("8000"), config, True)

        assert phase is None
        assert "prop-1" not in phases

    @pytest.mark.asyncio
    async def test_minimum_trading_days_gate_passing(self, tracker, phases, prop_firm_config):
        config = replace(prop_firm_config, minimum_trading_days=3)

        phase = await tracker.evaluate(phases, "prop-1", Decimal("11200"), config, False, trading_days=2)
        assert phase == ChallengePhase.EVALUATING

        phase = await tracker.evaluate(phases, "prop-1", Decimal("11200"), config, False, trading_days=3)
        assert phase == ChallengePhase.PASSED


class TestPromotion:
    """passed -> funded is an external operation."""

    @pytest.mark.asyncio
    async def test_promote_passed_account(self, tracker, phases, sink, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("11000"), prop_firm_config, False)

        phase = await tracker.promote_to_funded(phases, "prop-1")

        assert phase == ChallengePhase.FUNDED
        assert sink.events[-1].new_phase == "funded"

    @pytest.mark.asyncio
    async def test_funded_is_terminal(self, tracker, phases, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("11000"), prop_firm_config, False)
        await tracker.promote_to_funded(phases, "prop-1")

        phase = await tracker.evaluate(phases, "prop-1", Decimal("8000"), prop_firm_config, True)
        assert phase == ChallengePhase.FUNDED

    @pytest.mark.asyncio
    async def test_cannot_promote_evaluating(self, tracker, phases, prop_firm_config):
        await tracker.evaluate(phases, "prop-1", Decimal("10500"), prop_firm_config, False)

        with pytest.raises(InvalidPhaseTransitionError):
            await tracker.promote_to_funded(phases, "prop-1")

    @pytest.mark.asyncio
    async def test_cannot_promote_untracked(self, tracker, phases):
        with pytest.raises(InvalidPhaseTransitionError):
            await tracker.promote_to_funded(phases, "nobody")


class TestChallengeProgress:
    """Progress toward target, loss limit and trading days."""

    def test_progress_fractions(self, prop_firm_config):
        config = replace(prop_firm_config, minimum_trading_days=4)
        progress = compute_progress(config, Decimal("10500"), Decimal("300"), trading_days=2)

        assert progress.current_pnl == Decimal("500")
        assert progress.target_equity == Decimal("11000")
        assert progress.profit_progress_pct == pytest.approx(0.5)
        assert progress.drawdown_progress_pct == pytest.approx(0.3)
        assert progress.trading_days_progress_pct == pytest.approx(0.5)
        assert progress.trading_days_met is False

    def test_progress_is_capped(self, prop_firm_config):
        progress = compute_progress(prop_firm_config, Decimal("13000"), Decimal("1500"))

        assert progress.profit_progress_pct == 1.0
        assert progress.drawdown_progress_pct == 1.0
        assert progress.trading_days_progress_pct is None
        assert progress.trading_days_met is True

    def test_losing_account_has_no_profit_progress(self, prop_firm_config):
        progress = compute_progress(prop_firm_config, Decimal("9500"), Decimal("500"))
        assert progress.profit_progress_pct == 0.0

    @pytest.mark.asyncio
    async def test_zero_target_progress_matches_phase(self, tracker, phases, prop_firm_config):
        config = replace(prop_firm_config, profit_target=Decimal("0"))

        phase = await tracker.evaluate(phases, "prop-1", Decimal("10000"), config, False)
        progress = compute_progress(config, Decimal("10000"))

        assert phase == ChallengePhase.PASSED
        assert progress.profit_progress_pct == 1.0
        assert compute_progress(config, Decimal("9800")).profit_progress_pct == 0.0

    def test_count_trading_days(self, sample_trades):
        trades = sample_trades + [TradeRecord("t9", "acc-2", Decimal("10"), entry_date=datetime(2026, 3, 9))]

        # 2026-03-02 (twice), 2026-03-03, 2026-03-04 (open trade still counts)
        assert count_trading_days("acc-1", trades) == 3
        assert count_trading_days("acc-2", trades) == 1
        assert count_trading_days("acc-3", trades) == 0
