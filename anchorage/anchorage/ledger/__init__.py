"""
Ledger capability and its two realizations.

- LedgerClient: Protocol with anchor() and query()
- HttpLedgerClient: production gateway client
- MockLedgerClient: deterministic stand-in
- build_ledger_client: pick one from configuration
"""

from .client import (
    LedgerClient,
    LedgerError,
    LedgerRecord,
    LedgerRejected,
    LedgerTimeout,
    LedgerUnavailable,
)
from .http import HttpLedgerClient, HttpLedgerConfig
from .mock import MockLedgerClient, mock_ref
from .provider import build_ledger_client

__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerRecord",
    "LedgerRejected",
    "LedgerTimeout",
    "LedgerUnavailable",
    "HttpLedgerClient",
    "HttpLedgerConfig",
    "MockLedgerClient",
    "mock_ref",
    "build_ledger_client",
]
