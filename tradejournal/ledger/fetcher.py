"""
Ledger Fetcher - Reads trades, transactions and account configuration

Provides:
- LedgerFetcher / AccountConfigProvider interfaces consumed by the engine
- RestLedgerClient: PostgREST-style HTTP backend with retries
- InMemoryLedger: in-process ledger for tests and local runs

A fetch either returns the complete ledger or raises LedgerFetchError.
A failed read is never turned into an empty ledger.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Dict, List, Any, Iterable

import aiohttp

from ..errors import LedgerFetchError
from .models import AccountConfig, LedgerSnapshot, TradeRecord, TransactionRecord

logger = logging.getLogger(__name__)


class LedgerFetcher(ABC):
    """Reads the trade and transaction ledger for a user."""

    @abstractmethod
    async def fetch(
        self,
        user_id: str,
        account_ids: Optional[Iterable[str]] = None,
    ) -> LedgerSnapshot:
        """Return every trade and transaction for the user, optionally filtered by account."""


class AccountConfigProvider(ABC):
    """Reads account configuration owned by account management."""

    @abstractmethod
    async def get_accounts(self, user_id: str) -> List[AccountConfig]:
        """Return the configuration of every account the user owns."""


@dataclass
class RestLedgerConfig:
    """Connection settings for the ledger REST backend."""
    base_url: str
    api_key: str
    access_token: Optional[str] = None
    timeout_seconds: float = 10.0
    max_retries: int = 3

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }


class RestLedgerClient(LedgerFetcher, AccountConfigProvider):
    """
    Ledger backend over a PostgREST-style HTTP API.

    Trades and transactions are requested concurrently; if either request
    fails after retries the whole fetch fails.

    Usage:
        client = RestLedgerClient(RestLedgerConfig(base_url=..., api_key=...))
        accounts = await client.get_accounts(user_id)
        ledger = await client.fetch(user_id)
        await client.close()
    """

    TRADES_TABLE = "trades"
    TRANSACTIONS_TABLE = "financial_transactions"
    ACCOUNTS_TABLE = "trading_accounts"

    def __init__(self, config: RestLedgerConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self.config.headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """GET rows from a table with retries on transient errors."""
        url = f"{self.config.base_url.rstrip('/')}/rest/v1/{table}"
        session = await self._get_session()

        for attempt in range(self.config.max_retries):
            try:
                async with session.get(url, params=params) as response:
                    if response.status == 429:
                        retry_after = int(response.headers.get("Retry-After", "1"))
                        logger.warning(f"Rate limited reading {table}, retrying after {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                    response.raise_for_status()
                    rows = await response.json()
                    if not isinstance(rows, list):
                        raise LedgerFetchError(f"Unexpected response from {table}", {"body": rows})
                    return rows

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt == self.config.max_retries - 1:
                    raise LedgerFetchError(f"Failed to read {table}: {e}", {"table": table}) from e
                wait = 2 ** attempt
                logger.warning(f"Reading {table} failed, retrying in {wait}s: {e}")
                await asyncio.sleep(wait)

        raise LedgerFetchError(f"Max retries exceeded reading {table}", {"table": table})

    @staticmethod
    def _filters(user_id: str, account_ids: Optional[Iterable[str]]) -> Dict[str, str]:
        params = {"user_id": f"eq.{user_id}"}
        if account_ids is not None:
            params["trading_account_id"] = f"in.({','.join(account_ids)})"
        return params

    async def fetch(
        self,
        user_id: str,
        account_ids: Optional[Iterable[str]] = None,
    ) -> LedgerSnapshot:
        account_ids = list(account_ids) if account_ids is not None else None
        filters = self._filters(user_id, account_ids)

        trade_rows, transaction_rows = await asyncio.gather(
            self._select(self.TRADES_TABLE, {
                "select": "id,pnl,trading_account_id,status,entry_date",
                **filters,
            }),
            self._select(self.TRANSACTIONS_TABLE, {
                "select": "id,trading_account_id,amount,transaction_type,created_at",
                **filters,
            }),
        )

        snapshot = LedgerSnapshot(
            user_id=user_id,
            trades=[TradeRecord.from_row(row) for row in trade_rows],
            transactions=[TransactionRecord.from_row(row) for row in transaction_rows],
            fetched_at=datetime.now(),
        )
        logger.debug(
            f"Fetched ledger for {user_id}: {len(snapshot.trades)} trades, "
            f"{len(snapshot.transactions)} transactions"
        )
        return snapshot

    async def get_accounts(self, user_id: str) -> List[AccountConfig]:
        rows = await self._select(self.ACCOUNTS_TABLE, {"select": "*", "user_id": f"eq.{user_id}"})
        return [AccountConfig.from_row(row) for row in rows]


class InMemoryLedger(LedgerFetcher, AccountConfigProvider):
    """
    Ledger held in process memory.

    Records can be amended after the fact, as trade edits and transaction
    corrections are in real storage. Setting ``fail_with`` makes the next
    fetch raise it, to exercise fetch-failure handling.
    """

    def __init__(self):
        self._accounts: Dict[str, Dict[str, AccountConfig]] = {}
        self._trades: Dict[str, Dict[str, TradeRecord]] = {}
        self._transactions: Dict[str, Dict[str, TransactionRecord]] = {}
        self.fail_with: Optional[Exception] = None
        self.fetch_count = 0

    def add_account(self, user_id: str, config: AccountConfig):
        self._accounts.setdefault(user_id, {})[config.account_id] = config

    def update_account(self, user_id: str, account_id: str, **changes) -> AccountConfig:
        config = replace(self._accounts[user_id][account_id], **changes)
        self._accounts[user_id][account_id] = config
        return config

    def remove_account(self, user_id: str, account_id: str):
        self._accounts.get(user_id, {}).pop(account_id, None)

    def add_trade(self, user_id: str, trade: TradeRecord):
        """Add or replace (amend) a trade by id."""
        self._trades.setdefault(user_id, {})[trade.trade_id] = trade

    def add_transaction(self, user_id: str, transaction: TransactionRecord):
        """Add or replace (correct) a transaction by id."""
        self._transactions.setdefault(user_id, {})[transaction.transaction_id] = transaction

    def remove_trade(self, user_id: str, trade_id: str):
        self._trades.get(user_id, {}).pop(trade_id, None)

    async def fetch(
        self,
        user_id: str,
        account_ids: Optional[Iterable[str]] = None,
    ) -> LedgerSnapshot:
        self.fetch_count += 1
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise LedgerFetchError(f"Ledger read failed: {error}") from error

        wanted = set(account_ids) if account_ids is not None else None
        trades = [
            t for t in self._trades.get(user_id, {}).values()
            if wanted is None or t.account_id in wanted
        ]
        transactions = [
            t for t in self._transactions.get(user_id, {}).values()
            if wanted is None or t.account_id in wanted
        ]
        return LedgerSnapshot(user_id=user_id, trades=trades, transactions=transactions)

    async def get_accounts(self, user_id: str) -> List[AccountConfig]:
        return list(self._accounts.get(user_id, {}).values())
