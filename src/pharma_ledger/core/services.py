"""Service wiring.

:func:`build_services` is the only place that turns a
:class:`~pharma_ledger.config.LedgerConfig` into live components.  Every
component receives its settings and paths through its constructor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pharma_ledger.chain.ledger import ChainLedger
from pharma_ledger.config import LedgerConfig
from pharma_ledger.config import config as default_config
from pharma_ledger.core.manager import LedgerManager
from pharma_ledger.core.outbox import Outbox
from pharma_ledger.ledgers.storage import LedgerStorage
from pharma_ledger.locks import KeyedLocks
from pharma_ledger.store.base import StoreClient
from pharma_ledger.store.memory import InMemoryStore
from pharma_ledger.store.supabase import SupabaseClient
from pharma_ledger.sync.archive import DeadLetterLog, RecordArchive
from pharma_ledger.sync.engine import SyncEngine
from pharma_ledger.sync.tracker import IdempotencyTracker
from pharma_ledger.sync.webhook import WebhookIngest

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: LedgerConfig
    store: StoreClient
    chain: ChainLedger
    ledgers: LedgerStorage
    tracker: IdempotencyTracker
    manager: LedgerManager
    sync: SyncEngine
    webhooks: WebhookIngest

    def start(self) -> None:
        """Start webhook workers and, if enabled, the periodic sync loop."""
        self.webhooks.start()
        if self.config.sync.enabled:
            self.sync.start()

    def stop(self) -> None:
        if self.sync.is_running:
            self.sync.stop()
        self.webhooks.stop()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()


def build_store(cfg: LedgerConfig) -> StoreClient:
    if cfg.store.backend == "memory":
        logger.info("Using in-memory store")
        return InMemoryStore()
    return SupabaseClient.from_settings(cfg.store)


def build_services(cfg: LedgerConfig | None = None, *, store: StoreClient | None = None) -> Services:
    """Construct every component from ``cfg`` (default: the module config).

    Args:
        cfg: Configuration to wire from.
        store: Optional store client overriding the configured backend.
    """
    cfg = cfg or default_config
    paths = cfg.storage
    store = store if store is not None else build_store(cfg)

    chain = ChainLedger(paths.chain_path)
    ledgers = LedgerStorage(paths.manufacturer_ledgers_dir, paths.common_ledger_path)
    tracker = IdempotencyTracker(paths.tracker_path)
    record_locks = KeyedLocks()

    manager = LedgerManager(chain, ledgers, store, Outbox(paths.outbox_path))
    sync = SyncEngine(store, chain, tracker, record_locks, cfg.sync, paths.sync_log_path)
    webhooks = WebhookIngest(
        chain,
        store,
        tracker,
        RecordArchive(paths.records_dir),
        DeadLetterLog(paths.dead_letter_path),
        record_locks,
        cfg.webhook,
        tables=cfg.sync.tables,
        on_processed=sync.record_activity,
    )
    logger.info("Services wired (data dir %s, store %s)", paths.root, cfg.store.backend)
    return Services(
        config=cfg,
        store=store,
        chain=chain,
        ledgers=ledgers,
        tracker=tracker,
        manager=manager,
        sync=sync,
        webhooks=webhooks,
    )
