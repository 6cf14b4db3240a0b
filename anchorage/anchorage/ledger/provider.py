"""Ledger client selection from configuration (resolved once at startup)."""

from __future__ import annotations

import logging

from ..config import LedgerConfig
from ..errors import ConfigError
from ..secrets import SecretsProvider, resolve_secret
from .client import LedgerClient
from .http import HttpLedgerClient, HttpLedgerConfig
from .mock import MockLedgerClient

logger = logging.getLogger(__name__)


def build_ledger_client(cfg: LedgerConfig, *, secrets: SecretsProvider | None = None) -> LedgerClient:
    """
    Construct the configured ledger client.

    Raises:
        ConfigError: If the provider is unknown or the http endpoint is missing
    """
    if cfg.provider == "mock":
        logger.info("Using mock ledger")
        return MockLedgerClient(owner_address=cfg.owner_address, always_registered=cfg.always_registered)

    if cfg.provider == "http":
        if not cfg.endpoint:
            raise ConfigError("ledger.endpoint is required for the http provider")
        api_key = resolve_secret(cfg.api_key_ref, secrets)
        if cfg.api_key_ref and api_key is None:
            # Only the reference is logged, never the value.
            logger.warning("Ledger API key %s did not resolve; sending unauthenticated requests", cfg.api_key_ref)
        logger.info("Using http ledger at %s", cfg.endpoint)
        return HttpLedgerClient(HttpLedgerConfig(endpoint=cfg.endpoint, api_key=api_key, timeout_s=cfg.timeout_s))

    raise ConfigError(f"Unknown ledger provider: {cfg.provider!r}")
