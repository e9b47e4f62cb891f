"""
Service configuration management.

Configuration is loaded from multiple sources with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/ledger.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. Components
never read the module-level ``config`` themselves; the service wiring hands
each one the settings section it needs.

Usage:
    from pharma_ledger.config import config

    print(config.storage.chain_path)
    print(config.sync.interval_seconds)

Environment Variable Mapping:
    PHARMA_HOST                -> server.host
    PHARMA_PORT                -> server.port
    PHARMA_DATA_DIR            -> storage.data_dir
    PHARMA_STORE_BACKEND       -> store.backend
    SUPABASE_URL               -> store.url
    SUPABASE_KEY               -> store.key
    SUPABASE_SERVICE_KEY       -> store.service_key
    PHARMA_SYNC_ENABLED        -> sync.enabled
    PHARMA_SYNC_INTERVAL       -> sync.interval_seconds
    PHARMA_SYNC_TABLES         -> sync.tables
    WEBHOOK_SECRET             -> webhook.secret
    PHARMA_WEBHOOK_MAX_RETRIES -> webhook.max_retries
    PHARMA_WEBHOOK_WORKERS     -> webhook.workers
    PHARMA_LOG_LEVEL           -> logging.level
    PHARMA_LOG_FORMAT          -> logging.format
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Config file paths
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "ledger.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "ledger.example.ini"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class ServerSettings:
    """Network server configuration."""

    host: str = "0.0.0.0"  # nosec B104 - intentional for server binding
    port: int = 3000


@dataclass
class StorageSettings:
    """Local file layout for the chain, ledgers and bookkeeping logs."""

    data_dir: str = "data"

    @property
    def root(self) -> Path:
        """Absolute data directory."""
        p = Path(self.data_dir)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p

    @property
    def chain_path(self) -> Path:
        return self.root / "blockchain" / "blockchain_ledger.json"

    @property
    def manufacturer_ledgers_dir(self) -> Path:
        return self.root / "ledgers" / "manufacturers"

    @property
    def common_ledger_path(self) -> Path:
        return self.root / "ledgers" / "common_ledger.json"

    @property
    def records_dir(self) -> Path:
        return self.root / "records"

    @property
    def tracker_path(self) -> Path:
        return self.root / "processed_transactions.jsonl"

    @property
    def outbox_path(self) -> Path:
        return self.root / "outbox.jsonl"

    @property
    def dead_letter_path(self) -> Path:
        return self.root / "dead_letters.jsonl"

    @property
    def sync_log_path(self) -> Path:
        return self.root / "sync_logs" / "sync_log.jsonl"


@dataclass
class StoreSettings:
    """External relational store (Supabase / PostgREST)."""

    backend: Literal["supabase", "memory"] = "supabase"
    url: str = ""
    key: str = ""
    service_key: str = ""
    timeout_seconds: float = 10.0

    @property
    def active_key(self) -> str:
        """Prefer the service key when one is configured."""
        return self.service_key or self.key


@dataclass
class SyncSettings:
    """Periodic reconciliation settings."""

    enabled: bool = True
    interval_seconds: float = 60.0
    tables: list[str] = field(default_factory=lambda: ["drugs", "shipments"])


@dataclass
class WebhookSettings:
    """Webhook ingest settings."""

    secret: str = ""
    max_retries: int = 3
    backoff_seconds: float = 1.0
    workers: int = 4
    queue_size: int = 100


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class LedgerConfig:
    """
    Complete service configuration.

    Aggregates all settings sections. Access via the module-level ``config``
    singleton or build one with :func:`load_config`.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    webhook: WebhookSettings = field(default_factory=WebhookSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated string to list, stripping whitespace."""
    if not value or value.strip() == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_from_ini(parser: configparser.ConfigParser, cfg: LedgerConfig) -> None:
    """Load configuration from parsed INI file into LedgerConfig."""
    # Server section
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    # Storage section
    if parser.has_section("storage"):
        if parser.has_option("storage", "data_dir"):
            cfg.storage.data_dir = parser.get("storage", "data_dir")

    # Store section
    if parser.has_section("store"):
        if parser.has_option("store", "backend"):
            val = parser.get("store", "backend").lower()
            if val in ("supabase", "memory"):
                cfg.store.backend = val  # type: ignore[assignment]
        if parser.has_option("store", "url"):
            cfg.store.url = parser.get("store", "url")
        if parser.has_option("store", "key"):
            cfg.store.key = parser.get("store", "key")
        if parser.has_option("store", "service_key"):
            cfg.store.service_key = parser.get("store", "service_key")
        if parser.has_option("store", "timeout_seconds"):
            cfg.store.timeout_seconds = parser.getfloat("store", "timeout_seconds")

    # Sync section
    if parser.has_section("sync"):
        if parser.has_option("sync", "enabled"):
            cfg.sync.enabled = _parse_bool(parser.get("sync", "enabled"))
        if parser.has_option("sync", "interval_seconds"):
            cfg.sync.interval_seconds = parser.getfloat("sync", "interval_seconds")
        if parser.has_option("sync", "tables"):
            cfg.sync.tables = _parse_list(parser.get("sync", "tables"))

    # Webhook section
    if parser.has_section("webhook"):
        if parser.has_option("webhook", "secret"):
            cfg.webhook.secret = parser.get("webhook", "secret")
        if parser.has_option("webhook", "max_retries"):
            cfg.webhook.max_retries = parser.getint("webhook", "max_retries")
        if parser.has_option("webhook", "backoff_seconds"):
            cfg.webhook.backoff_seconds = parser.getfloat("webhook", "backoff_seconds")
        if parser.has_option("webhook", "workers"):
            cfg.webhook.workers = parser.getint("webhook", "workers")
        if parser.has_option("webhook", "queue_size"):
            cfg.webhook.queue_size = parser.getint("webhook", "queue_size")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: LedgerConfig) -> None:
    """Apply environment variable overrides to configuration."""
    # Server settings
    if env_host := os.getenv("PHARMA_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("PHARMA_PORT"):
        cfg.server.port = int(env_port)

    # Storage settings
    if env_data := os.getenv("PHARMA_DATA_DIR"):
        cfg.storage.data_dir = env_data

    # Store settings (Supabase names kept for drop-in deployments)
    if env_backend := os.getenv("PHARMA_STORE_BACKEND"):
        if env_backend.lower() in ("supabase", "memory"):
            cfg.store.backend = env_backend.lower()  # type: ignore[assignment]
    if env_url := os.getenv("SUPABASE_URL"):
        cfg.store.url = env_url
    if env_key := os.getenv("SUPABASE_KEY"):
        cfg.store.key = env_key
    if env_service_key := os.getenv("SUPABASE_SERVICE_KEY"):
        cfg.store.service_key = env_service_key

    # Sync settings
    if env_sync := os.getenv("PHARMA_SYNC_ENABLED"):
        cfg.sync.enabled = _parse_bool(env_sync)
    if env_interval := os.getenv("PHARMA_SYNC_INTERVAL"):
        cfg.sync.interval_seconds = float(env_interval)
    if env_tables := os.getenv("PHARMA_SYNC_TABLES"):
        cfg.sync.tables = _parse_list(env_tables)

    # Webhook settings
    if env_secret := os.getenv("WEBHOOK_SECRET"):
        cfg.webhook.secret = env_secret
    if env_retries := os.getenv("PHARMA_WEBHOOK_MAX_RETRIES"):
        cfg.webhook.max_retries = int(env_retries)
    if env_workers := os.getenv("PHARMA_WEBHOOK_WORKERS"):
        cfg.webhook.workers = int(env_workers)

    # Logging settings
    if env_log := os.getenv("PHARMA_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()
    if env_format := os.getenv("PHARMA_LOG_FORMAT"):
        if env_format.lower() in ("simple", "detailed", "json"):
            cfg.logging.format = env_format.lower()  # type: ignore[assignment]


def load_config(config_file: Path | None = None) -> LedgerConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. ``config_file`` or config/ledger.ini
        3. config/ledger.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        LedgerConfig: Fully populated configuration object.
    """
    cfg = LedgerConfig()

    if config_file is None:
        if CONFIG_FILE.exists():
            config_file = CONFIG_FILE
        elif CONFIG_EXAMPLE.exists():
            # Use example as fallback for development
            config_file = CONFIG_EXAMPLE

    if config_file and config_file.exists():
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    # Apply environment variable overrides (highest priority)
    _apply_env_overrides(cfg)

    return cfg


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

config = load_config()


def get_config_status(cfg: LedgerConfig | None = None, config_file: Path | None = None) -> dict:
    """
    Get configuration status for diagnostics.

    Describes ``cfg`` (default: the module-level config) as loaded from
    ``config_file`` (default: config/ledger.ini).  Secrets are reported only
    as present/absent.
    """
    cfg = cfg or config
    source = Path(config_file) if config_file else CONFIG_FILE
    return {
        "config_file_exists": source.exists(),
        "config_file_path": str(source),
        "using_example": config_file is None and not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "data_dir": str(cfg.storage.root),
        "store_backend": cfg.store.backend,
        "store_configured": bool(cfg.store.url and cfg.store.active_key),
        "webhook_secret_set": bool(cfg.webhook.secret),
        "sync_enabled": cfg.sync.enabled,
        "sync_tables": list(cfg.sync.tables),
    }

