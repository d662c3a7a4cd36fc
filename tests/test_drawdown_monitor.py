"""
Tests for drawdown monitoring.

Tests:
- Peak tracking and trailing drawdown
- Edge-triggered, sticky breach notifications
- Not-applicable accounts
- Malformed input rejection
- State table lifetime and breach reset
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from tradejournal.errors import MalformedInputError
from tradejournal.ledger.models import DrawdownMode
from tradejournal.risk.drawdown_monitor import (
    DrawdownMonitor, DrawdownStateTable, MonitorConfig, RiskLevel,
)
from tradejournal.risk.notifications import (
    RecordingNotificationSink, RiskEvent, BreachResetEvent,
)


@pytest.fixture
def sink():
    return RecordingNotificationSink()


@pytest.fixture
def monitor(sink):
    return DrawdownMonitor(sink=sink)


@pytest.fixture
def states():
    return DrawdownStateTable()


async def feed(monitor, states, equities, limit=Decimal("1000"), account_id="acc-1", **kwargs):
    """Evaluate a sequence of equity samples, one second apart."""
    start = datetime(2026, 3, 2, 9, 30)
    results = []
    for i, equity in enumerate(equities):
        results.append(await monitor.evaluate(
            states,
            account_id,
            is_active=True,
            is_prop_firm=False,
            max_loss_limit=limit,
            current_equity=Decimal(str(equity)),
            initial_balance=Decimal("10000"),
            timestamp=start + timedelta(seconds=i),
            **kwargs,
        ))
    return results


class TestDrawdownMonitor:
    """Peak tracking and breach detection."""

    @pytest.mark.asyncio
    async def test_drawdown_from_peak(self, monitor, states, sink):
        results = await feed(monitor, states, [10200, 10500, 9600])

        third = results[-1]
        assert third.peak_equity == Decimal("10500")
        assert third.drawdown == Decimal("900")
        assert third.breached is False
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_breach_emitted_once(self, monitor, states, sink):
        results = await feed(monitor, states, [10200, 10500, 9600, 9400])

        last = results[-1]
        assert last.drawdown == Decimal("1100")
        assert last.breached is True
        assert last.newly_breached is True

        breaches = sink.breaches()
        assert len(breaches) == 1
        assert breaches[0].account_id == "acc-1"
        assert breaches[0].drawdown == Decimal("1100")
        assert breaches[0].limit == Decimal("1000")
        assert breaches[0].timestamp == last.timestamp

    @pytest.mark.asyncio
    async def test_repeated_evaluation_while_breached_does_not_reemit(self, monitor, states, sink):
        await feed(monitor, states, [10500, 9400, 9400, 9300, 9350])

        assert len(sink.breaches()) == 1

    @pytest.mark.asyncio
    async def test_breach_is_sticky_after_recovery(self, monitor, states, sink):
        results = await feed(monitor, states, [10500, 9400, 10800, 11000])

        assert all(r.breached for r in results[1:])
        assert results[-1].newly_breached is False
        assert states.get("acc-1").breached_at == results[1].timestamp
        assert len(sink.breaches()) == 1

    @pytest.mark.asyncio
    async def test_breach_at_exact_limit(self, monitor, states):
        results = await feed(monitor, states, [9000])
        assert results[0].breached is True

    @pytest.mark.asyncio
    async def test_peak_never_decreases(self, monitor, states):
        results = await feed(monitor, states, [10100, 9900, 10400, 10300, 10450, 9800])

        peaks = [r.peak_equity for r in results]
        assert peaks == sorted(peaks)
        assert peaks[-1] == Decimal("10450")

    @pytest.mark.asyncio
    async def test_peak_starts_at_initial_balance(self, monitor, states):
        results = await feed(monitor, states, [9500])

        assert results[0].peak_equity == Decimal("10000")
        assert results[0].drawdown == Decimal("500")

    @pytest.mark.asyncio
    async def test_static_mode_measures_from_initial_balance(self, monitor, states):
        results = await feed(monitor, states, [10800, 9500], mode=DrawdownMode.STATIC)

        assert results[0].drawdown == Decimal("0")
        assert results[1].drawdown == Decimal("500")
        assert results[1].peak_equity == Decimal("10800")
        assert results[1].breached is False

    @pytest.mark.asyncio
    async def test_risk_levels(self, monitor, states):
        results = await feed(monitor, states, [9500, 9250, 9050, 8900])

        assert results[0].level == RiskLevel.NORMAL
        assert results[1].level == RiskLevel.CAUTION
        assert results[2].level == RiskLevel.HIGH_RISK
        assert results[3].level == RiskLevel.BREACHED
        assert results[3].limit_usage_pct == 1.0

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, monitor, states, sink):
        await feed(monitor, states, [8900], account_id="acc-1")
        results = await feed(monitor, states, [9800], account_id="acc-2")

        assert results[0].breached is False
        assert [e.account_id for e in sink.breaches()] == ["acc-1"]


class TestNotApplicable:
    """Inactive accounts and accounts without a loss limit are not monitored."""

    @pytest.mark.asyncio
    async def test_inactive_account_is_noop(self, monitor, states, sink):
        result = await monitor.evaluate(
            states, "acc-1", is_active=False, is_prop_firm=True,
            max_loss_limit=Decimal("1000"), current_equity=Decimal("5000"),
            initial_balance=Decimal("10000"),
        )

        assert result.monitored is False
        assert result.breached is False
        assert "acc-1" not in states
        assert sink.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [None, Decimal("0")])
    async def test_missing_limit_is_noop(self, monitor, states, sink, limit):
        result = await monitor.evaluate(
            states, "acc-1", is_active=True, is_prop_firm=False,
            max_loss_limit=limit, current_equity=Decimal("5000"),
            initial_balance=Decimal("10000"),
        )

        assert result.monitored is False
        assert result.level == RiskLevel.NORMAL
        assert len(states) == 0


class TestMalformedInput:
    """Non-finite numbers are rejected without touching state."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("current_equity", float("nan")),
        ("current_equity", float("inf")),
        ("initial_balance", float("-inf")),
        ("initial_balance", Decimal("NaN")),
    ])
    async def test_non_finite_rejected(self, monitor, states, sink, field, value):
        await feed(monitor, states, [10500])
        before = states.get("acc-1")

        kwargs = {
            "current_equity": Decimal("8000"),
            "initial_balance": Decimal("10000"),
        }
        kwargs[field] = value

        with pytest.raises(MalformedInputError):
            await monitor.evaluate(
                states, "acc-1", is_active=True, is_prop_firm=False,
                max_loss_limit=Decimal("1000"), **kwargs,
            )

        assert states.get("acc-1") == before
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_failing_sink_leaves_state_unchanged(self, states):
        sink = AsyncMock()
        sink.notify.side_effect = RuntimeError("toast service down")
        monitor = DrawdownMonitor(sink=sink)

        with pytest.raises(RuntimeError):
            await feed(monitor, states, [9000])

        assert "acc-1" not in states


class TestStateTable:
    """Explicit lifetime of per-account state."""

    def test_start_monitoring_initializes_peak(self, states):
        state = states.start_monitoring("acc-1", Decimal("10000"))

        assert state.peak_equity == Decimal("10000")
        assert state.breached is False
        assert states.start_monitoring("acc-1", Decimal("50")) is state

    def test_stop_monitoring_evicts(self, states):
        states.start_monitoring("acc-1", Decimal("10000"))

        assert states.stop_monitoring("acc-1") is not None
        assert "acc-1" not in states
        assert states.stop_monitoring("acc-1") is None

    def test_reset_unknown_account_raises(self, states):
        with pytest.raises(KeyError):
            states.reset_breach("missing")

    @pytest.mark.asyncio
    async def test_reset_breach_allows_new_breach(self, monitor, states, sink):
        await feed(monitor, states, [10500, 9400])

        state = await monitor.reset_breach(states, "acc-1")
        assert state.breached is False
        assert state.peak_equity == Decimal("9400")
        assert isinstance(sink.events[-1], BreachResetEvent)

        results = await feed(monitor, states, [9000, 8300])
        assert results[0].breached is False
        assert results[1].newly_breached is True
        assert len(sink.breaches()) == 2

    @pytest.mark.asyncio
    async def test_static_reset_measures_from_reset_baseline(self, monitor, states, sink):
        await feed(monitor, states, [8900], mode=DrawdownMode.STATIC)

        state = await monitor.reset_breach(states, "acc-1")
        assert state.reference_equity == Decimal("8900")

        results = await feed(monitor, states, [8900, 8500], mode=DrawdownMode.STATIC)
        assert results[0].breached is False
        assert results[0].drawdown == Decimal("0")
        assert results[1].drawdown == Decimal("400")
        assert len(sink.breaches()) == 1

        results = await feed(monitor, states, [7900], mode=DrawdownMode.STATIC)
        assert results[0].newly_breached is True
        assert len(sink.breaches()) == 2

    @pytest.mark.asyncio
    async def test_custom_breach_reason(self, states, sink):
        monitor = DrawdownMonitor(sink=sink, config=MonitorConfig(breach_reason="Trailing limit hit"))
        await feed(monitor, states, [8000])

        assert states.get("acc-1").breach_reason == "Trailing limit hit"
        assert isinstance(sink.events[0], RiskEvent)
        assert sink.events[0].to_dict()["reason"] == "Trailing limit hit"
