"""
Secret references.

Configuration holds references such as "env:ANCHORAGE_LEDGER_KEY", never
raw values, so config files and logs can be shared safely.

The reference format is "<provider>:<key>":
- env:VAR_NAME - environment variable
"""

from __future__ import annotations

import os
from typing import Protocol


class SecretsProvider(Protocol):
    """Resolves secret references to values."""

    def supports(self, ref: str) -> bool:
        ...

    def get(self, ref: str) -> str | None:
        ...


class EnvSecretsProvider:
    """Resolve "env:VAR_NAME" from the process environment."""

    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        return os.environ.get(ref[len(self.PREFIX) :]) or None


def is_secret_ref(value: str) -> bool:
    return ":" in value and value.split(":", 1)[0] in {"env"}


def resolve_secret(ref: str | None, provider: SecretsProvider | None = None) -> str | None:
    """
    Resolve a secret reference.

    Returns:
        The secret value, or None if ref is empty or cannot be resolved
    """
    if not ref:
        return None
    provider = provider or EnvSecretsProvider()
    if not provider.supports(ref):
        return None
    return provider.get(ref)
