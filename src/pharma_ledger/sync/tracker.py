"""Durable set of processed transaction hashes.

Stored as an append-only JSONL file with one hash per line, loaded into a
set at start.  :meth:`IdempotencyTracker.mark_processed` appends and fsyncs
under an exclusive file lock before returning, so a hash reported as
processed survives a crash.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from pharma_ledger.storage.files import append_jsonl, iter_jsonl

logger = logging.getLogger(__name__)


class IdempotencyTracker:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._processed: set[str] = {
            entry for entry in iter_jsonl(self.path) if isinstance(entry, str) and entry
        }
        if self._processed:
            logger.info("Loaded %d processed transaction hashes", len(self._processed))

    def __len__(self) -> int:
        return len(self._processed)

    def is_processed(self, tx_hash: str) -> bool:
        with self._lock:
            return tx_hash in self._processed

    def mark_processed(self, tx_hash: str) -> bool:
        """Record ``tx_hash``; returns ``False`` if it was already present."""
        with self._lock:
            if tx_hash in self._processed:
                return False
            append_jsonl(self.path, tx_hash)
            self._processed.add(tx_hash)
            return True
