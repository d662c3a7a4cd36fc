"""
FastAPI Server for the Trading Journal Risk Engine

Exposes equity, drawdown and challenge state per account to the journal
UI, plus the explicit breach-reset and funded-promotion operations.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..config import EngineSettings
from ..errors import LedgerFetchError, InvalidPhaseTransitionError, MalformedInputError
from ..ledger.fetcher import InMemoryLedger, RestLedgerClient
from ..monitoring.service import AccountRiskService, AccountRiskReport
from ..risk.notifications import FanOutNotificationSink, LoggingNotificationSink, RecordingNotificationSink

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class EquityResponse(BaseModel):
    equity: str
    initial_balance: str
    trade_pnl: str
    net_cash_flow: str
    excluded_cash_flow: str
    closed_trade_count: int

class DrawdownResponse(BaseModel):
    monitored: bool
    peak_equity: Optional[str]
    drawdown: str
    max_loss_limit: Optional[str]
    breached: bool
    breached_at: Optional[str]
    limit_usage_pct: float
    level: str

class ProgressResponse(BaseModel):
    current_pnl: str
    target_equity: Optional[str]
    profit_progress_pct: float
    drawdown_progress_pct: float
    trading_days_completed: int
    trading_days_required: Optional[int]

class AccountRiskResponse(BaseModel):
    account_id: str
    sequence: int
    equity: EquityResponse
    drawdown: DrawdownResponse
    phase: Optional[str]
    progress: Optional[ProgressResponse]
    timestamp: str

class BreachResetResponse(BaseModel):
    account_id: str
    peak_equity: str
    breached: bool

class PhaseResponse(BaseModel):
    account_id: str
    phase: str


# ============================================================================
# Helper Functions
# ============================================================================

def decimal_to_str(d: Optional[Decimal]) -> Optional[str]:
    """Convert Decimal to string for JSON serialization."""
    return f"{d:.2f}" if d is not None else None


def report_to_response(report: AccountRiskReport) -> AccountRiskResponse:
    snapshot = report.snapshot
    dd = report.drawdown
    progress = None
    if report.progress is not None:
        p = report.progress
        progress = ProgressResponse(
            current_pnl=decimal_to_str(p.current_pnl),
            target_equity=decimal_to_str(p.target_equity),
            profit_progress_pct=p.profit_progress_pct,
            drawdown_progress_pct=p.drawdown_progress_pct,
            trading_days_completed=p.trading_days_completed,
            trading_days_required=p.trading_days_required,
        )

    return AccountRiskResponse(
        account_id=report.account_id,
        sequence=report.sequence,
        equity=EquityResponse(
            equity=decimal_to_str(snapshot.equity),
            initial_balance=decimal_to_str(snapshot.initial_balance),
            trade_pnl=decimal_to_str(snapshot.trade_pnl),
            net_cash_flow=decimal_to_str(snapshot.net_cash_flow),
            excluded_cash_flow=decimal_to_str(snapshot.excluded_cash_flow),
            closed_trade_count=snapshot.closed_trade_count,
        ),
        drawdown=DrawdownResponse(
            monitored=dd.monitored,
            peak_equity=decimal_to_str(dd.peak_equity),
            drawdown=decimal_to_str(dd.drawdown),
            max_loss_limit=decimal_to_str(dd.max_loss_limit),
            breached=dd.breached,
            breached_at=dd.breached_at.isoformat() if dd.breached_at else None,
            limit_usage_pct=dd.limit_usage_pct,
            level=dd.level.value,
        ),
        phase=report.phase.value if report.phase else None,
        progress=progress,
        timestamp=report.timestamp.isoformat(),
    )


def build_service(settings: EngineSettings) -> AccountRiskService:
    """Create the risk service from settings, with a REST ledger when configured."""
    if settings.ledger_configured:
        ledger = RestLedgerClient(settings.ledger_config())
    else:
        logger.warning("Ledger backend not configured, using in-memory ledger")
        ledger = InMemoryLedger()

    sink = FanOutNotificationSink(LoggingNotificationSink(), RecordingNotificationSink())
    return AccountRiskService(ledger, ledger, sink=sink, poll_interval=settings.poll_interval)


def _recorder(service: AccountRiskService) -> Optional[RecordingNotificationSink]:
    sink = service.sink
    if isinstance(sink, RecordingNotificationSink):
        return sink
    if isinstance(sink, FanOutNotificationSink):
        for s in sink.sinks:
            if isinstance(s, RecordingNotificationSink):
                return s
    return None


# ============================================================================
# FastAPI App
# ============================================================================

def create_app(
    service: Optional[AccountRiskService] = None,
    settings: Optional[EngineSettings] = None,
) -> FastAPI:
    """
    Build the API app.

    With no service given, one is built from settings at startup and, when
    user ids are configured, polled in the background.
    """
    settings = settings or EngineSettings.from_env()
    holder: Dict[str, AccountRiskService] = {}
    if service is not None:
        holder["service"] = service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = "service" not in holder
        if owned:
            holder["service"] = build_service(settings)
            if settings.user_ids:
                await holder["service"].start(settings.user_ids)
        yield
        if owned:
            svc = holder["service"]
            await svc.stop()
            close = getattr(svc.fetcher, "close", None)
            if close is not None:
                await close()

    app = FastAPI(
        title="Trading Journal Risk API",
        description="Equity, drawdown and prop-firm challenge state per trading account",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_service() -> AccountRiskService:
        svc = holder.get("service")
        if svc is None:
            raise HTTPException(status_code=503, detail="Risk service not initialized")
        return svc

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        svc = holder.get("service")
        return {
            "status": "ok" if svc is not None else "starting",
            "accounts": len(svc.get_reports()) if svc else 0,
        }

    @app.post("/users/{user_id}/refresh", response_model=List[AccountRiskResponse])
    async def refresh_user(user_id: str):
        svc = get_service()
        try:
            reports = await svc.refresh(user_id)
        except LedgerFetchError as e:
            logger.error(f"Refresh failed for {user_id}: {e}")
            raise HTTPException(status_code=502, detail=str(e))
        except MalformedInputError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return [report_to_response(r) for r in reports]

    @app.get("/accounts/{account_id}/risk", response_model=AccountRiskResponse)
    async def get_account_risk(account_id: str):
        report = get_service().get_report(account_id)
        if report is None:
            raise HTTPException(status_code=404, detail=f"No report for account {account_id}")
        return report_to_response(report)

    @app.post("/accounts/{account_id}/breach/reset", response_model=BreachResetResponse)
    async def reset_breach(account_id: str):
        try:
            state = await get_service().reset_breach(account_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Account not monitored: {account_id}")
        return BreachResetResponse(
            account_id=account_id,
            peak_equity=decimal_to_str(state.peak_equity),
            breached=state.breached,
        )

    @app.post("/accounts/{account_id}/promote", response_model=PhaseResponse)
    async def promote(account_id: str):
        try:
            phase = await get_service().promote_to_funded(account_id)
        except InvalidPhaseTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return PhaseResponse(account_id=account_id, phase=phase.value)

    @app.get("/events")
    async def get_events(
        account_id: Optional[str] = None,
        limit: int = Query(50, ge=1, le=1000),
    ) -> List[Dict[str, Any]]:
        recorder = _recorder(get_service())
        if recorder is None:
            return []
        events = recorder.events_for(account_id) if account_id else recorder.events
        return [e.to_dict() for e in events[-limit:]]

    return app


app = create_app()
