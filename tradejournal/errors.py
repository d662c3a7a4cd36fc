"""
Error types for the equity and risk engine.

Malformed input is rejected locally by the function that detects it.
Fetch failures surface from the ledger collaborator to the caller and are
never treated as an empty ledger.
"""

from typing import Optional, Dict, Any


class EquityEngineError(Exception):
    """Base class for engine errors."""
    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.data = data or {}


class MalformedInputError(EquityEngineError, ValueError):
    """Non-finite number or negative magnitude where a positive one is required."""


class LedgerFetchError(EquityEngineError):
    """The ledger could not be read completely."""


class InvalidPhaseTransitionError(EquityEngineError):
    """Requested challenge phase change is not allowed from the current phase."""
