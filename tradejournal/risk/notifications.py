"""
Risk Notifications

Events published when monitored state changes:
- RiskEvent: an account's drawdown reached its loss limit
- PhaseChangeEvent: a prop-firm challenge changed phase
- BreachResetEvent: a breach was cleared by an explicit reset

Sinks receive events asynchronously. Toasts, e-mail or analytics live
behind a sink and are not part of the engine.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, List, Any, Callable, Awaitable, Union

logger = logging.getLogger(__name__)


class EventType(Enum):
    BREACH = "breach"
    PHASE_CHANGE = "phase_change"
    BREACH_RESET = "breach_reset"


@dataclass
class RiskEvent:
    """Drawdown reached the configured maximum loss limit."""
    account_id: str
    drawdown: Decimal
    limit: Decimal
    timestamp: datetime
    equity: Decimal
    peak_equity: Decimal
    is_prop_firm: bool = False
    reason: str = "Max drawdown exceeded"
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType = EventType.BREACH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.event_type.value,
            "account_id": self.account_id,
            "drawdown": str(self.drawdown),
            "limit": str(self.limit),
            "equity": str(self.equity),
            "peak_equity": str(self.peak_equity),
            "is_prop_firm": self.is_prop_firm,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PhaseChangeEvent:
    """A prop-firm challenge moved from one phase to another."""
    account_id: str
    old_phase: str
    new_phase: str
    equity: Optional[Decimal]
    timestamp: datetime
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType = EventType.PHASE_CHANGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.event_type.value,
            "account_id": self.account_id,
            "old_phase": self.old_phase,
            "new_phase": self.new_phase,
            "equity": str(self.equity) if self.equity is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BreachResetEvent:
    """A sticky breach was acknowledged and cleared."""
    account_id: str
    peak_equity: Decimal
    timestamp: datetime
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType = EventType.BREACH_RESET

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.event_type.value,
            "account_id": self.account_id,
            "peak_equity": str(self.peak_equity),
            "timestamp": self.timestamp.isoformat(),
        }


Event = Union[RiskEvent, PhaseChangeEvent, BreachResetEvent]


class NotificationSink:
    """Receives engine events. Subclasses override ``notify``."""

    async def notify(self, event: Event) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes events to the log."""

    async def notify(self, event: Event) -> None:
        if isinstance(event, RiskEvent):
            logger.warning(
                f"Account {event.account_id} breached: drawdown ${event.drawdown} "
                f">= limit ${event.limit}"
            )
        elif isinstance(event, PhaseChangeEvent):
            logger.info(
                f"Account {event.account_id} challenge phase: "
                f"{event.old_phase} -> {event.new_phase}"
            )
        else:
            logger.info(f"Account {event.account_id} breach reset, peak ${event.peak_equity}")


class RecordingNotificationSink(NotificationSink):
    """Keeps the most recent events in memory for querying."""

    def __init__(self, max_events: int = 1000):
        self._events: deque = deque(maxlen=max_events)

    async def notify(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    def events_for(self, account_id: str) -> List[Event]:
        return [e for e in self._events if e.account_id == account_id]

    def breaches(self) -> List[RiskEvent]:
        return [e for e in self._events if isinstance(e, RiskEvent)]

    def clear(self):
        self._events.clear()


class CallbackNotificationSink(NotificationSink):
    """Forwards events to an async callback."""

    def __init__(self, callback: Callable[[Event], Awaitable[None]]):
        self._callback = callback

    async def notify(self, event: Event) -> None:
        await self._callback(event)


class FanOutNotificationSink(NotificationSink):
    """Delivers each event to several sinks in order."""

    def __init__(self, *sinks: NotificationSink):
        self.sinks = list(sinks)

    async def notify(self, event: Event) -> None:
        for sink in self.sinks:
            await sink.notify(event)
