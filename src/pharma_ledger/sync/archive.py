"""Record snapshots, deletion tombstones and the dead-letter log."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pharma_ledger.storage.files import append_jsonl, atomic_write_json, iter_jsonl, read_json
from pharma_ledger.timeutil import compact_stamp, now_iso

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def _safe(part: str) -> str:
    return _UNSAFE.sub("_", part)


class RecordArchive:
    """Snapshot files for records seen by sync and webhook ingest.

    Files are named ``{table}_{id}_{stamp}.json`` for snapshots and
    ``{table}_{id}_{stamp}_deleted.json`` for tombstones.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def save_snapshot(self, table: str, record_id: str, record: Mapping[str, Any]) -> Path:
        path = self.directory / f"{_safe(table)}_{_safe(record_id)}_{compact_stamp()}.json"
        atomic_write_json(path, dict(record))
        logger.debug("Saved snapshot %s", path.name)
        return path

    def save_tombstone(self, table: str, record_id: str, record: Mapping[str, Any]) -> Path:
        """Write ``{deleted_at, original_record}``; ledgers are never pruned."""
        path = self.directory / f"{_safe(table)}_{_safe(record_id)}_{compact_stamp()}_deleted.json"
        atomic_write_json(path, {"deleted_at": now_iso(), "original_record": dict(record)})
        logger.debug("Saved tombstone %s", path.name)
        return path

    def snapshots(self, table: str, record_id: str) -> list[dict[str, Any]]:
        """Every non-tombstone snapshot of one record, oldest first."""
        prefix = f"{_safe(table)}_{_safe(record_id)}_"
        paths = sorted(
            p
            for p in self.directory.glob(f"{prefix}*.json")
            if not p.name.endswith("_deleted.json")
        )
        return [read_json(p) for p in paths]

    def tombstones(self, table: str, record_id: str) -> list[dict[str, Any]]:
        prefix = f"{_safe(table)}_{_safe(record_id)}_"
        return [read_json(p) for p in sorted(self.directory.glob(f"{prefix}*_deleted.json"))]


class DeadLetterLog:
    """Durable JSONL record of webhook events that could not be processed."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def record(self, event: Mapping[str, Any], reason: str, attempts: int) -> None:
        append_jsonl(
            self.path,
            {
                "failed_at": now_iso(),
                "reason": reason,
                "attempts": attempts,
                "event": dict(event),
            },
            checksum=True,
        )
        logger.error("Dead-lettered %s event on %s: %s", event.get("type"), event.get("table"), reason)

    def entries(self) -> list[dict[str, Any]]:
        return list(iter_jsonl(self.path, checksum=True))
