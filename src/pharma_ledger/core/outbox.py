"""Durable intent log for multi-store operations.

Every Ledger Manager operation writes its complete plan here before touching
any store, marks each step as it completes, and closes the intent at the
end.  An intent that is still open after a crash or a failed write is an
inconsistency: :meth:`Outbox.pending` lists it and the manager can replay
it.

Records (JSONL, one checksummed object per line)::

    {"event": "open",  "op_id": ..., "kind": ..., "params": {...},
     "timestamp": ..., "steps": [...]}
    {"event": "step",  "op_id": ..., "step": 0}
    {"event": "close", "op_id": ...}
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pharma_ledger.storage.files import append_jsonl, iter_jsonl
from pharma_ledger.timeutil import now_iso

logger = logging.getLogger(__name__)


@dataclass
class Intent:
    """An operation that was opened but not yet closed."""

    op_id: str
    kind: str
    params: dict[str, Any]
    timestamp: str
    steps: list[dict[str, Any]]
    completed: set[int] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "op_id": self.op_id,
            "kind": self.kind,
            "params": self.params,
            "timestamp": self.timestamp,
            "steps": [step["step"] for step in self.steps],
            "completed": sorted(self.completed),
        }


class Outbox:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def open(self, kind: str, params: dict[str, Any], steps: list[dict[str, Any]]) -> Intent:
        """Record the full plan for an operation before it runs."""
        intent = Intent(
            op_id=uuid.uuid4().hex,
            kind=kind,
            params=dict(params),
            timestamp=now_iso(),
            steps=list(steps),
        )
        with self._lock:
            append_jsonl(
                self.path,
                {
                    "event": "open",
                    "op_id": intent.op_id,
                    "kind": kind,
                    "params": intent.params,
                    "timestamp": intent.timestamp,
                    "steps": intent.steps,
                },
                checksum=True,
            )
        return intent

    def mark(self, intent: Intent, index: int) -> None:
        with self._lock:
            append_jsonl(
                self.path, {"event": "step", "op_id": intent.op_id, "step": index}, checksum=True
            )
        intent.completed.add(index)

    def close(self, intent: Intent) -> None:
        with self._lock:
            append_jsonl(self.path, {"event": "close", "op_id": intent.op_id}, checksum=True)

    def pending(self) -> list[Intent]:
        """Open intents in the order they were opened."""
        intents: dict[str, Intent] = {}
        with self._lock:
            for record in iter_jsonl(self.path, checksum=True):
                event = record.get("event")
                op_id = record.get("op_id")
                if event == "open":
                    intents[op_id] = Intent(
                        op_id=op_id,
                        kind=record.get("kind", ""),
                        params=record.get("params") or {},
                        timestamp=record.get("timestamp", ""),
                        steps=record.get("steps") or [],
                    )
                elif event == "step" and op_id in intents:
                    intents[op_id].completed.add(int(record["step"]))
                elif event == "close":
                    intents.pop(op_id, None)
        return list(intents.values())
