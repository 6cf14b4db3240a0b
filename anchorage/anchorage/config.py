"""
Configuration loading.

Settings come from a TOML file (anchorage.toml by default) and are
resolved once at process start into frozen dataclasses. Nothing reads
configuration after startup; components receive what they need through
their constructors.

    [store]
    path = ".anchorage/artifacts.db"
    journal = ".anchorage/journal.jsonl"

    [ledger]
    provider = "http"            # "mock" | "http"
    endpoint = "https://anchor-gateway.example/v1"
    api_key = "env:ANCHORAGE_LEDGER_KEY"
    timeout_s = 30
    # mock provider only
    owner_address = "0xMOCK_OWNER_ADDRESS"
    always_registered = true

    [pipeline]
    workers = 4
    anchor_timeout_s = 30
    max_bytes = 10485760
    max_title_length = 200

    [logging]
    level = "WARNING"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .secrets import is_secret_ref

DEFAULT_CONFIG_NAME = "anchorage.toml"
DEFAULT_STATE_DIR = ".anchorage"

LEDGER_PROVIDERS = frozenset({"mock", "http"})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class StoreConfig:
    path: Path = Path(DEFAULT_STATE_DIR) / "artifacts.db"
    journal_path: Path | None = Path(DEFAULT_STATE_DIR) / "journal.jsonl"


@dataclass(frozen=True)
class LedgerConfig:
    provider: str = "mock"
    endpoint: str | None = None
    api_key_ref: str | None = None
    timeout_s: float = 30.0
    owner_address: str = "0xMOCK_OWNER_ADDRESS"
    # Mock state is per process; query() reports every digest as anchored.
    always_registered: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    workers: int = 4
    anchor_timeout_s: float = 30.0
    max_bytes: int = 10 * 1024 * 1024
    max_title_length: int = 200


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "WARNING"


@dataclass(frozen=True)
class AnchorageConfig:
    store: StoreConfig = field(default_factory=StoreConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, base_dir: Path | None = None) -> AnchorageConfig:
        """
        Build config from a parsed TOML document.

        Args:
            data: Parsed TOML tables
            base_dir: Directory relative paths resolve against

        Raises:
            ConfigError: On unknown providers, bad values or missing endpoint
        """
        base_dir = base_dir or Path.cwd()
        store_t = _table(data, "store")
        ledger_t = _table(data, "ledger")
        pipeline_t = _table(data, "pipeline")
        logging_t = _table(data, "logging")

        store_path = _resolve(base_dir, store_t.get("path", StoreConfig.path))
        journal = store_t.get("journal", StoreConfig.journal_path)
        journal_path = _resolve(base_dir, journal) if journal else None

        provider = str(ledger_t.get("provider", "mock")).lower()
        if provider not in LEDGER_PROVIDERS:
            raise ConfigError(f"Unknown ledger provider {provider!r} (expected one of {sorted(LEDGER_PROVIDERS)})")
        endpoint = ledger_t.get("endpoint")
        if provider == "http" and not endpoint:
            raise ConfigError("ledger.endpoint is required when provider = \"http\"")
        api_key_ref = ledger_t.get("api_key")
        if api_key_ref is not None and not is_secret_ref(str(api_key_ref)):
            raise ConfigError("ledger.api_key must be a secret reference such as \"env:ANCHORAGE_LEDGER_KEY\"")

        level = str(logging_t.get("level", LoggingConfig.level)).upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"Unknown logging level {level!r}")

        return cls(
            store=StoreConfig(path=store_path, journal_path=journal_path),
            ledger=LedgerConfig(
                provider=provider,
                endpoint=endpoint,
                api_key_ref=api_key_ref,
                timeout_s=_positive(ledger_t, "timeout_s", LedgerConfig.timeout_s),
                owner_address=str(ledger_t.get("owner_address", LedgerConfig.owner_address)),
                always_registered=_flag(ledger_t, "always_registered", LedgerConfig.always_registered),
            ),
            pipeline=PipelineConfig(
                workers=int(_positive(pipeline_t, "workers", PipelineConfig.workers)),
                anchor_timeout_s=_positive(pipeline_t, "anchor_timeout_s", PipelineConfig.anchor_timeout_s),
                max_bytes=int(_positive(pipeline_t, "max_bytes", PipelineConfig.max_bytes)),
                max_title_length=int(_positive(pipeline_t, "max_title_length", PipelineConfig.max_title_length)),
            ),
            logging=LoggingConfig(level=level),
        )


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _resolve(base_dir: Path, value: Any) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base_dir / path)


def _positive(table: dict[str, Any], key: str, default: float) -> float:
    value = table.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}")
    return number


def _flag(table: dict[str, Any], key: str, default: bool) -> bool:
    value = table.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def load_config(config_path: str | Path | None = None) -> AnchorageConfig:
    """
    Load configuration from TOML.

    With no explicit path, ./anchorage.toml is used if present, otherwise
    defaults (mock ledger, state under ./.anchorage).

    Raises:
        ConfigError: If an explicit path does not exist or the TOML is malformed
    """
    if config_path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return AnchorageConfig.from_dict({}, base_dir=Path.cwd())
        config_path = candidate

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse config TOML: {e}") from e

    return AnchorageConfig.from_dict(data, base_dir=path.parent.resolve())
