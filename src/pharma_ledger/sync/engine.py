"""Periodic reconciliation between the external store and the chain.

Each cycle walks the configured tables.  For every row whose
``blockchain_tx_id`` is empty or ``"pending"`` the engine appends a
``record_sync`` transaction, writes the hash back to the store and marks it
in the idempotency tracker, so the store's change notification for that
write-back is skipped by webhook ingest.

Push direction (local to store) is a no-op: the store is the system of
record and nothing is authored locally without going through the Ledger
Manager, which writes the store itself.

Concurrency:
    - ``start``/``stop`` bookkeeping is guarded by one service lock.
    - Each table has a single-flight lock.  A forced sync that finds the
      table busy reports it as ``"skipped"`` instead of waiting.
    - Rows are chained under the per-record lock shared with webhook ingest.

Every outcome is appended to the sync log (JSONL).  A failing table is
logged and recorded; the remaining tables still run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from pharma_ledger.chain.ledger import ChainLedger
from pharma_ledger.config import SyncSettings
from pharma_ledger.errors import ConflictError, LedgerError, ValidationError
from pharma_ledger.locks import KeyedLocks
from pharma_ledger.storage.files import append_jsonl, iter_jsonl
from pharma_ledger.store.base import Row, StoreClient, is_unchained, record_id
from pharma_ledger.sync.records import current_tx_id, record_transaction
from pharma_ledger.sync.tracker import IdempotencyTracker
from pharma_ledger.timeutil import now_iso

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Outcome of syncing one table once."""

    table: str
    last_sync: str
    records_received: int = 0
    records_sent: int = 0
    records_chained: int = 0
    status: str = "success"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncEngine:
    def __init__(
        self,
        store: StoreClient,
        chain: ChainLedger,
        tracker: IdempotencyTracker,
        record_locks: KeyedLocks,
        settings: SyncSettings,
        log_path: Path,
    ) -> None:
        self.store = store
        self.chain = chain
        self.tracker = tracker
        self.record_locks = record_locks
        self.settings = settings
        self.log_path = Path(log_path)

        self._service_lock = threading.Lock()
        self._table_locks = KeyedLocks()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._last_success: dict[str, str] = {}
        self._last_sync: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run one cycle now, then one every ``interval_seconds``.

        Raises:
            ConflictError: The engine is already running.
        """
        with self._service_lock:
            if self.is_running:
                raise ConflictError("sync engine is already running")
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="sync-engine", daemon=True)
            self._thread.start()
        logger.info("Sync engine started (interval %.1fs)", self.settings.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for the current cycle to finish.

        Raises:
            ConflictError: The engine is not running.
        """
        with self._service_lock:
            if self._thread is None:
                raise ConflictError("sync engine is not running")
            self._stop.set()
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync engine stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.run_cycle()
            if self._stop.wait(self.settings.interval_seconds):
                break

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def run_cycle(self) -> list[SyncStatus]:
        """Sync every configured table once."""
        statuses = [self.sync_table(table) for table in self.settings.tables]
        with self._state_lock:
            self._last_sync = now_iso()
        return statuses

    def force_sync(self, table: str | None = None) -> list[SyncStatus]:
        """Sync one table (or all of them) now, outside the periodic loop."""
        if table is None:
            return self.run_cycle()
        if table not in self.settings.tables:
            raise ValidationError(f"table {table!r} is not configured for sync")
        return [self.sync_table(table)]

    def sync_table(self, table: str) -> SyncStatus:
        lock = self._table_locks.get(table)
        if not lock.acquire(blocking=False):
            status = SyncStatus(table, now_iso(), status="skipped", error="sync already in progress")
            logger.info("Sync of %s skipped: already in progress", table)
        else:
            try:
                status = self._sync_table(table)
            finally:
                lock.release()

        self._write_log(status)
        if status.status == "success":
            self.record_activity(table, status.last_sync)
        return status

    def _sync_table(self, table: str) -> SyncStatus:
        status = SyncStatus(table, now_iso())
        try:
            rows = self.store.select(table, "*")
            status.records_received = len(rows)
            status.records_chained = self._pull(table, rows)
            status.records_sent = self._push(table)
        except LedgerError as exc:
            status.status = "error"
            status.error = str(exc)
            logger.error("Sync of %s failed: %s", table, exc)
            return status

        if status.records_chained or status.records_sent:
            logger.info(
                "Sync of %s: %d rows, %d chained, %d sent",
                table,
                status.records_received,
                status.records_chained,
                status.records_sent,
            )
        return status

    def _pull(self, table: str, rows: list[Row]) -> int:
        chained = 0
        for row in rows:
            if not is_unchained(row.get("blockchain_tx_id")):
                continue
            rid = record_id(table, row)
            if rid is None:
                logger.warning("Skipping %s row without a key: %r", table, row)
                continue
            if self._chain_row(table, rid, row):
                chained += 1
        return chained

    def _chain_row(self, table: str, rid: str, row: Row) -> bool:
        with self.record_locks.hold((table, rid)):
            tx_id, exists = current_tx_id(self.store, table, rid, row)
            if not exists or not is_unchained(tx_id):
                return False
            timestamp = str(row.get("updated_at") or row.get("created_at") or now_iso())
            tx = record_transaction(table, rid, row, timestamp)
            if not self.chain.contains(tx.hash):
                self.chain.append_transaction(tx)
            self.store.update(table, rid, {"blockchain_tx_id": tx.hash})
            self.tracker.mark_processed(tx.hash)
        logger.debug("Chained %s %s as %s", table, rid, tx.hash[:12])
        return True

    def _push(self, table: str) -> int:
        """Local-to-store push; intentionally a no-op (see module docstring)."""
        return 0

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def record_activity(self, table: str, when: str | None = None) -> None:
        """Record a successful sync of ``table`` (also used by webhook ingest)."""
        with self._state_lock:
            self._last_success[table] = when or now_iso()

    def status(self) -> dict[str, Any]:
        with self._state_lock:
            return {
                "is_running": self.is_running,
                "last_sync": self._last_sync,
                "sync_interval": self.settings.interval_seconds,
                "tables": {table: self._last_success.get(table) for table in self.settings.tables},
            }

    def history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent sync log records, newest last."""
        records = list(iter_jsonl(self.log_path, checksum=True))
        return records[-limit:] if limit else records

    def _write_log(self, status: SyncStatus) -> None:
        try:
            append_jsonl(self.log_path, status.to_dict(), checksum=True)
        except LedgerError as exc:
            logger.error("Could not write sync log for %s: %s", status.table, exc)
