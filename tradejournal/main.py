#!/usr/bin/env python3
"""
Trading Journal Risk Engine - Main Entry Point

Usage:
    python -m tradejournal.main [command] --user USER_ID

Commands:
    equity      Refresh once and print equity, drawdown and phase per account
    monitor     Poll the ledger and log breaches and phase changes
    serve       Run the HTTP API
"""

import asyncio
import argparse
import logging
import sys

from tradejournal.config import EngineSettings
from tradejournal.errors import LedgerFetchError
from tradejournal.ledger.fetcher import RestLedgerClient
from tradejournal.monitoring.service import AccountRiskService
from tradejournal.risk.notifications import LoggingNotificationSink

logger = logging.getLogger(__name__)


def _create_service(settings: EngineSettings) -> AccountRiskService:
    client = RestLedgerClient(settings.ledger_config())
    return AccountRiskService(
        client,
        client,
        sink=LoggingNotificationSink(),
        poll_interval=settings.poll_interval,
    )


async def print_equity(service: AccountRiskService, user_ids):
    """Refresh once and print a summary per account."""
    for user_id in user_ids:
        print(f"\n=== Accounts for {user_id} ===\n")
        reports = await service.refresh(user_id)
        if not reports:
            print("  No accounts")
            continue

        for report in reports:
            dd = report.drawdown
            print(f"{report.account_id}:")
            print(f"  Equity: ${report.snapshot.equity}")
            print(f"  Trade P&L: ${report.snapshot.trade_pnl}")
            print(f"  Net Cash Flow: ${report.snapshot.net_cash_flow}")
            if dd.monitored:
                print(f"  Drawdown: ${dd.drawdown} / ${dd.max_loss_limit} ({dd.limit_usage_pct:.1%})")
                print(f"  Risk Level: {dd.level.value}")
            if report.phase:
                print(f"  Challenge Phase: {report.phase.value}")
    print()


async def run_monitor(service: AccountRiskService, user_ids):
    await service.start(user_ids)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await service.stop()


def serve(host: str, port: int):
    import uvicorn

    uvicorn.run("tradejournal.api.server:app", host=host, port=port)


async def run_command(command: str, settings: EngineSettings, user_ids) -> int:
    try:
        service = _create_service(settings)
    except ValueError as e:
        logger.error(str(e))
        return 2

    try:
        if command == "equity":
            await print_equity(service, user_ids)
        elif command == "monitor":
            await run_monitor(service, user_ids)
    except LedgerFetchError as e:
        logger.error(f"Ledger unavailable: {e}")
        return 1
    finally:
        await service.fetcher.close()

    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Trading Journal Risk Engine")
    parser.add_argument("command", choices=["equity", "monitor", "serve"],
                        default="equity", nargs="?", help="Command to run")
    parser.add_argument("--user", action="append", dest="users",
                        help="User id to evaluate (repeatable, defaults to TJ_USER_IDS)")
    parser.add_argument("--interval", type=int, help="Polling interval in seconds")
    parser.add_argument("--host", default="0.0.0.0", help="API bind address (serve)")
    parser.add_argument("--port", type=int, default=8000, help="API port (serve)")
    args = parser.parse_args(argv)

    settings = EngineSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    if args.interval:
        settings.poll_interval = args.interval

    user_ids = args.users or settings.user_ids or []
    if not user_ids:
        parser.error("no users given (use --user or TJ_USER_IDS)")

    return asyncio.run(run_command(args.command, settings, user_ids))


if __name__ == "__main__":
    sys.exit(main())
