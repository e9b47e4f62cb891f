"""Webhook ingest: store change notifications processed by a worker pool.

Flow::

    HTTP handler ─ verify_signature ─ submit ─> bounded queue ─> N workers
                                                   │ full                │
                                              QueueFullError      process_event
                                                (HTTP 503)        retry / dead-letter

``INSERT``/``UPDATE`` events chain the record if it has no finalised
transaction yet, then write one snapshot per transaction hash.  ``DELETE``
events write a tombstone; ledgers are never pruned.

Idempotency:
    An unchained record's transaction is derived from the event timestamp
    and the record content, so a re-delivered event maps to the same hash.
    The idempotency tracker is consulted before anything is written, which
    gives exactly one chain entry and one snapshot per logical change.

Retries:
    Transient failures (:attr:`LedgerError.transient`) are retried up to
    ``max_retries`` attempts; attempt ``i`` waits ``i * backoff_seconds``
    on the stop event, so shutdown interrupts the wait.  Exhausted,
    non-retryable and cancelled events go to the dead-letter log.
"""

from __future__ import annotations

import hmac
import logging
import queue
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pharma_ledger.chain.ledger import ChainLedger
from pharma_ledger.config import WebhookSettings
from pharma_ledger.errors import LedgerError, QueueFullError, ValidationError
from pharma_ledger.locks import KeyedLocks
from pharma_ledger.store.base import StoreClient, is_unchained
from pharma_ledger.sync.archive import DeadLetterLog, RecordArchive
from pharma_ledger.sync.records import current_tx_id, record_transaction, require_record_id
from pharma_ledger.sync.tracker import IdempotencyTracker
from pharma_ledger.timeutil import now_iso

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})


@dataclass(frozen=True)
class WebhookEvent:
    type: str
    table: str
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] | None = None
    schema: str = "public"
    timestamp: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> WebhookEvent:
        """Validate a raw webhook body.

        Raises:
            ValidationError: Unknown event type, missing table, or a record
                that is not an object.
        """
        event_type = str(payload.get("type") or "").upper()
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"unsupported webhook event type {payload.get('type')!r}")
        table = payload.get("table")
        if not isinstance(table, str) or not table:
            raise ValidationError("webhook payload has no table")
        record = payload.get("record") or {}
        old_record = payload.get("old_record")
        if not isinstance(record, Mapping) or (old_record is not None and not isinstance(old_record, Mapping)):
            raise ValidationError("webhook record must be an object")
        if event_type != "DELETE" and not record:
            raise ValidationError(f"{event_type} event without a record")
        return cls(
            type=event_type,
            table=table,
            record=dict(record),
            old_record=dict(old_record) if old_record is not None else None,
            schema=str(payload.get("schema") or "public"),
            timestamp=str(payload.get("timestamp") or now_iso()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "table": self.table,
            "record": self.record,
            "old_record": self.old_record,
            "schema": self.schema,
            "timestamp": self.timestamp,
        }


class WebhookIngest:
    """Bounded, cancellable processing of store change notifications.

    Args:
        chain: Hash-chain ledger.
        store: External store, for reading and writing back ``blockchain_tx_id``.
        tracker: Processed-hash registry.
        archive: Snapshot and tombstone writer.
        dead_letters: Sink for events that cannot be processed.
        record_locks: Per-record locks shared with the sync engine.
        settings: ``[webhook]`` settings.
        tables: Tables accepted from the store.
        on_processed: Called with the table name after each processed event.
    """

    def __init__(
        self,
        chain: ChainLedger,
        store: StoreClient,
        tracker: IdempotencyTracker,
        archive: RecordArchive,
        dead_letters: DeadLetterLog,
        record_locks: KeyedLocks,
        settings: WebhookSettings,
        tables: list[str],
        on_processed: Callable[[str], None] | None = None,
    ) -> None:
        self.chain = chain
        self.store = store
        self.tracker = tracker
        self.archive = archive
        self.dead_letters = dead_letters
        self.record_locks = record_locks
        self.settings = settings
        self.tables = list(tables)
        self.on_processed = on_processed

        self._queue: queue.Queue[WebhookEvent] = queue.Queue(maxsize=max(1, settings.queue_size))
        self._stop = threading.Event()
        self._workers: list[threading.Thread] = []
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Authentication and intake
    # ------------------------------------------------------------------

    def verify_signature(self, signature: str | None) -> bool:
        """Constant-time comparison of the signature header with the secret.

        An empty secret disables verification.
        """
        if not self.settings.secret:
            return True
        if not signature:
            return False
        return hmac.compare_digest(signature.encode("utf-8"), self.settings.secret.encode("utf-8"))

    def submit(self, payload: Mapping[str, Any]) -> WebhookEvent:
        """Validate and enqueue an event without blocking.

        Raises:
            ValidationError: Malformed payload or unknown table.
            QueueFullError: The queue is at capacity.
        """
        event = WebhookEvent.from_payload(payload)
        self._check_table(event.table)
        try:
            self._queue.put_nowait(event)
        except queue.Full as exc:
            logger.warning("Webhook queue full; rejecting %s on %s", event.type, event.table)
            raise QueueFullError("webhook queue is full") from exc
        logger.info("Queued webhook %s on %s", event.type, event.table)
        return event

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return any(worker.is_alive() for worker in self._workers)

    def start(self) -> None:
        with self._lifecycle_lock:
            if self.is_running:
                return
            self._stop.clear()
            self._workers = [
                threading.Thread(target=self._worker, name=f"webhook-worker-{i}", daemon=True)
                for i in range(max(1, self.settings.workers))
            ]
            for worker in self._workers:
                worker.start()
        if not self.settings.secret:
            logger.warning("WEBHOOK_SECRET is not set; webhook signatures are not verified")
        logger.info("Webhook ingest started with %d workers", len(self._workers))

    def stop(self, *, drain: bool = True, timeout: float | None = None) -> None:
        """Stop the workers.

        With ``drain`` the queue is processed first.  Events still queued
        after the workers exit are dead-lettered as cancelled.
        """
        with self._lifecycle_lock:
            if drain and self.is_running:
                self._queue.join()
            self._stop.set()
            for worker in self._workers:
                worker.join(timeout)
            self._workers = []
        cancelled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            self.dead_letters.record(event.to_dict(), "cancelled at shutdown", 0)
            self._queue.task_done()
            cancelled += 1
        logger.info("Webhook ingest stopped (%d events cancelled)", cancelled)

    def join(self) -> None:
        """Block until every queued event has been handled."""
        self._queue.join()

    def drain(self) -> int:
        """Handle every queued event in the calling thread; returns the count."""
        handled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return handled
            try:
                self._handle(event)
            finally:
                self._queue.task_done()
            handled += 1

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                event = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._handle(event)
            except Exception:
                # Includes failures writing the dead-letter log.
                logger.exception("Webhook worker lost %s event on %s", event.type, event.table)
            finally:
                self._queue.task_done()

    def _handle(self, event: WebhookEvent) -> None:
        attempts = max(1, self.settings.max_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                self.process_event(event)
                return
            except LedgerError as exc:
                if not exc.transient:
                    self.dead_letters.record(event.to_dict(), str(exc), attempt)
                    return
                last_error = exc
                logger.warning(
                    "Attempt %d/%d for %s on %s failed: %s", attempt, attempts, event.type, event.table, exc
                )
            except Exception as exc:
                logger.exception("Unexpected failure processing %s on %s", event.type, event.table)
                self.dead_letters.record(event.to_dict(), f"unexpected error: {exc}", attempt)
                return
            if attempt < attempts and self._stop.wait(attempt * self.settings.backoff_seconds):
                self.dead_letters.record(event.to_dict(), f"cancelled during retry: {last_error}", attempt)
                return
        self.dead_letters.record(event.to_dict(), f"retries exhausted: {last_error}", attempts)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_event(self, event: WebhookEvent | Mapping[str, Any]) -> str:
        """Process one event synchronously, without retries.

        Returns ``"processed"``, ``"skipped"`` (already processed) or
        ``"deleted"``.
        """
        if not isinstance(event, WebhookEvent):
            event = WebhookEvent.from_payload(event)
        self._check_table(event.table)
        if event.type == "DELETE":
            outcome = self.process_delete(event)
        else:
            outcome = self.process_record(event)
        if self.on_processed is not None:
            self.on_processed(event.table)
        return outcome

    def process_record(self, event: WebhookEvent) -> str:
        table, record = event.table, event.record
        rid = require_record_id(table, record)

        with self.record_locks.hold((table, rid)):
            tx_id, row_exists = current_tx_id(self.store, table, rid, record)
            tx = None
            if is_unchained(tx_id):
                tx = record_transaction(table, rid, record, event.timestamp)
                tx_id = tx.hash

            if self.tracker.is_processed(tx_id):
                logger.info("Transaction %s already processed; skipping %s %s", tx_id[:12], table, rid)
                return "skipped"

            if tx is not None:
                if not self.chain.contains(tx.hash):
                    self.chain.append_transaction(tx)
                if row_exists:
                    self.store.update(table, rid, {"blockchain_tx_id": tx.hash})

            self.archive.save_snapshot(table, rid, {**record, "blockchain_tx_id": tx_id})
            self.tracker.mark_processed(tx_id)

        logger.info("Processed %s %s %s (tx %s)", event.type, table, rid, tx_id[:12])
        return "processed"

    def process_delete(self, event: WebhookEvent) -> str:
        record = event.old_record or event.record
        rid = require_record_id(event.table, record)
        with self.record_locks.hold((event.table, rid)):
            self.archive.save_tombstone(event.table, rid, record)
        logger.info("Recorded deletion of %s %s", event.table, rid)
        return "deleted"

    def _check_table(self, table: str) -> None:
        if table not in self.tables:
            raise ValidationError(f"unhandled table in webhook: {table}")
