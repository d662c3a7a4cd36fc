"""
Risk module - Equity aggregation and prop-firm rule engine

Components:
- compute_equity / compute_snapshot: Equity from trades and cash flows
- DrawdownMonitor: Peak equity, drawdown and sticky breach detection
- ChallengeTracker: Prop-firm challenge phase (evaluating/passed/failed/funded)
- NotificationSink: Receivers for breach and phase-change events
"""

# Equity Aggregation
from .equity import (
    EquitySnapshot,
    compute_equity,
    compute_snapshot,
    compute_account_equities,
)

# Drawdown Monitoring
from .drawdown_monitor import (
    DrawdownMonitor,
    DrawdownState,
    DrawdownStateTable,
    DrawdownEvaluation,
    MonitorConfig,
    RiskLevel,
)

# Challenge Tracking
from .challenge import (
    ChallengeTracker,
    ChallengePhase,
    ChallengeState,
    ChallengeStateTable,
    ChallengeProgress,
    compute_progress,
    count_trading_days,
)

# Notifications
from .notifications import (
    NotificationSink,
    LoggingNotificationSink,
    RecordingNotificationSink,
    CallbackNotificationSink,
    FanOutNotificationSink,
    RiskEvent,
    PhaseChangeEvent,
    BreachResetEvent,
    EventType,
)

__all__ = [
    # Equity Aggregation
    "EquitySnapshot",
    "compute_equity",
    "compute_snapshot",
    "compute_account_equities",

    # Drawdown Monitoring
    "DrawdownMonitor",
    "DrawdownState",
    "DrawdownStateTable",
    "DrawdownEvaluation",
    "MonitorConfig",
    "RiskLevel",

    # Challenge Tracking
    "ChallengeTracker",
    "ChallengePhase",
    "ChallengeState",
    "ChallengeStateTable",
    "ChallengeProgress",
    "compute_progress",
    "count_trading_days",

    # Notifications
    "NotificationSink",
    "LoggingNotificationSink",
    "RecordingNotificationSink",
    "CallbackNotificationSink",
    "FanOutNotificationSink",
    "RiskEvent",
    "PhaseChangeEvent",
    "BreachResetEvent",
    "EventType",
]
