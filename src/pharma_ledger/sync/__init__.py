"""Store reconciliation: periodic sync, webhook ingest and their bookkeeping."""

from pharma_ledger.sync.archive import DeadLetterLog, RecordArchive
from pharma_ledger.sync.engine import SyncEngine, SyncStatus
from pharma_ledger.sync.tracker import IdempotencyTracker
from pharma_ledger.sync.webhook import WebhookEvent, WebhookIngest

__all__ = [
    "DeadLetterLog",
    "IdempotencyTracker",
    "RecordArchive",
    "SyncEngine",
    "SyncStatus",
    "WebhookEvent",
    "WebhookIngest",
]
