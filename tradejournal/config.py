"""
Engine settings loaded from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional, List

from .ledger.fetcher import RestLedgerConfig


@dataclass
class EngineSettings:
    """Runtime settings for the risk service, CLI and API server."""
    ledger_url: Optional[str] = None
    ledger_api_key: Optional[str] = None
    ledger_access_token: Optional[str] = None
    poll_interval: int = 60          # seconds between refreshes
    request_timeout: float = 10.0    # seconds per ledger request
    max_retries: int = 3
    log_level: str = "INFO"
    user_ids: Optional[List[str]] = None

    @property
    def ledger_configured(self) -> bool:
        return bool(self.ledger_url and self.ledger_api_key)

    def ledger_config(self) -> RestLedgerConfig:
        if not self.ledger_configured:
            raise ValueError("Missing TJ_LEDGER_URL or TJ_LEDGER_API_KEY")
        return RestLedgerConfig(
            base_url=self.ledger_url,
            api_key=self.ledger_api_key,
            access_token=self.ledger_access_token,
            timeout_seconds=self.request_timeout,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Load settings from TJ_* environment variables."""
        users = os.environ.get("TJ_USER_IDS", "")
        return cls(
            ledger_url=os.environ.get("TJ_LEDGER_URL"),
            ledger_api_key=os.environ.get("TJ_LEDGER_API_KEY"),
            ledger_access_token=os.environ.get("TJ_LEDGER_ACCESS_TOKEN"),
            poll_interval=int(os.environ.get("TJ_POLL_INTERVAL", "60")),
            request_timeout=float(os.environ.get("TJ_REQUEST_TIMEOUT", "10")),
            max_retries=int(os.environ.get("TJ_MAX_RETRIES", "3")),
            log_level=os.environ.get("TJ_LOG_LEVEL", "INFO").upper(),
            user_ids=[u.strip() for u in users.split(",") if u.strip()] or None,
        )
