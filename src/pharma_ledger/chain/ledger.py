"""Append-only hash-chain ledger persisted as a single JSON document.

File format
-----------
::

    {
      "blocks": [
        {"block_height": 1, "tx_hash": "...", "tx_data": {...},
         "timestamp": "...", "previous_block_hash": ""},
        ...
      ],
      "block_height": 1,
      "last_updated": "..."
    }

Concurrency
-----------
The :class:`ChainLedger` object owns the chain.  Blocks live in memory with
a ``tx_hash -> position`` index; every append runs behind one writer lock
and persists the whole document with write-to-temp then rename.  If the
write fails the in-memory block is rolled back, so memory and disk never
diverge.  One ``ChainLedger`` per file per process.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from pharma_ledger.chain.transactions import Transaction, validate
from pharma_ledger.errors import ConflictError, LedgerError, NotFoundError, OperationContext
from pharma_ledger.storage.files import atomic_write_json, read_json
from pharma_ledger.timeutil import now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Block:
    block_height: int
    tx_hash: str
    tx_data: dict[str, Any]
    timestamp: str
    previous_block_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Block:
        return cls(
            block_height=int(raw["block_height"]),
            tx_hash=str(raw["tx_hash"]),
            tx_data=dict(raw.get("tx_data") or {}),
            timestamp=str(raw.get("timestamp", "")),
            previous_block_hash=str(raw.get("previous_block_hash") or ""),
        )


def check_blocks(blocks: list[Block], *, verify_hashes: bool = False) -> dict[str, Any]:
    """Walk ``blocks`` and report the first broken link.

    Checks that the first block has height 1 and no predecessor, and that
    every later block's height and ``previous_block_hash`` follow from the
    block before it.  With ``verify_hashes`` each block's ``tx_hash`` is
    also recomputed from its stored envelope.
    """
    for i, block in enumerate(blocks):
        if i == 0:
            if block.block_height != 1:
                return _report("inconsistent", f"first block has height {block.block_height}", i)
            if block.previous_block_hash:
                return _report("inconsistent", "first block has a previous hash", i)
        else:
            prev = blocks[i - 1]
            if block.block_height != prev.block_height + 1:
                return _report(
                    "inconsistent",
                    f"height {block.block_height} does not follow {prev.block_height}",
                    i,
                )
            if block.previous_block_hash != prev.tx_hash:
                return _report("inconsistent", "previous_block_hash does not match prior tx_hash", i)
        if verify_hashes and not validate(block.tx_hash, block.tx_data):
            return _report("inconsistent", f"tx_hash {block.tx_hash[:12]} does not match tx_data", i)
    return _report("consistent", f"{len(blocks)} blocks verified", None)


def _report(status: str, detail: str, index: int | None) -> dict[str, Any]:
    return {"status": status, "detail": detail, "index": index}


class ChainLedger:
    """Single-writer hash chain backed by one JSON file.

    Args:
        path: Ledger file.  Created on the first append.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._blocks: list[Block] = []
        self._index: dict[str, int] = {}
        self._last_updated: str | None = None
        self._load()

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        try:
            document = read_json(self.path)
        except (OSError, json.JSONDecodeError) as exc:
            raise LedgerError(
                f"cannot read chain ledger: {exc}",
                context=OperationContext("chain.load", str(self.path)),
                cause=exc,
            ) from exc
        if document is None:
            return
        try:
            blocks = [Block.from_dict(raw) for raw in document.get("blocks", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerError(
                f"malformed block in chain ledger: {exc}",
                context=OperationContext("chain.load", str(self.path)),
                cause=exc,
            ) from exc
        self._blocks = blocks
        self._index = {block.tx_hash: i for i, block in enumerate(blocks)}
        self._last_updated = document.get("last_updated")
        logger.info("Loaded chain ledger %s (%d blocks)", self.path, len(blocks))

    def _document(self) -> dict[str, Any]:
        return {
            "blocks": [block.to_dict() for block in self._blocks],
            "block_height": len(self._blocks),
            "last_updated": self._last_updated,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, tx_data: Mapping[str, Any], tx_hash: str) -> int:
        """Append one block and return its height.

        Raises:
            ConflictError: ``tx_hash`` is already on the chain.
            LedgerWriteError: The ledger file could not be written; the
                block is not kept.
        """
        with self._lock:
            if tx_hash in self._index:
                raise ConflictError(
                    "transaction already on chain",
                    context=OperationContext("chain.append", tx_hash),
                )
            previous = self._blocks[-1].tx_hash if self._blocks else ""
            timestamp = now_iso()
            block = Block(
                block_height=len(self._blocks) + 1,
                tx_hash=tx_hash,
                tx_data=dict(tx_data),
                timestamp=timestamp,
                previous_block_hash=previous,
            )
            previous_updated = self._last_updated
            self._blocks.append(block)
            self._index[tx_hash] = len(self._blocks) - 1
            self._last_updated = timestamp
            try:
                atomic_write_json(self.path, self._document())
            except Exception:
                self._blocks.pop()
                del self._index[tx_hash]
                self._last_updated = previous_updated
                raise
            logger.debug("Appended block %d (%s)", block.block_height, tx_hash[:12])
            return block.block_height

    def append_transaction(self, tx: Transaction) -> int:
        """Append ``tx`` using its stored envelope as the block's ``tx_data``."""
        return self.append(tx.envelope(), tx.hash)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def block_height(self) -> int:
        return len(self._blocks)

    def blocks(self) -> list[Block]:
        with self._lock:
            return list(self._blocks)

    def contains(self, tx_hash: str) -> bool:
        return tx_hash in self._index

    def get_block(self, tx_hash: str) -> Block:
        """Return the block holding ``tx_hash``.

        Raises:
            NotFoundError: No block carries that hash.
        """
        with self._lock:
            position = self._index.get(tx_hash)
            if position is None:
                raise NotFoundError(
                    "transaction not on chain",
                    context=OperationContext("chain.get_block", tx_hash),
                )
            return self._blocks[position]

    def verify_transaction(self, tx_hash: str) -> bool:
        """Recompute the hash of the stored transaction and compare."""
        block = self.get_block(tx_hash)
        return validate(tx_hash, block.tx_data)

    def last_hash(self) -> str:
        with self._lock:
            return self._blocks[-1].tx_hash if self._blocks else ""

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "block_height": len(self._blocks),
                "last_updated": self._last_updated,
                "transaction_count": len(self._index),
                "last_hash": self._blocks[-1].tx_hash if self._blocks else "",
            }

    def consistency_check(self, *, verify_hashes: bool = False) -> dict[str, Any]:
        """Re-read the file and walk the chain.

        Returns a report ``{"status", "detail", "index"}`` where ``status`` is
        ``"consistent"``, ``"inconsistent"`` or ``"error"`` (file unreadable).
        ``index`` is the position of the first broken block, or ``None``.
        An absent or empty chain is consistent.
        """
        with self._lock:
            try:
                document = read_json(self.path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Chain consistency check could not read %s: %s", self.path, exc)
                return _report("error", f"cannot read chain ledger: {exc}", None)
        if document is None:
            return _report("consistent", "chain is empty", None)
        try:
            blocks = [Block.from_dict(raw) for raw in document.get("blocks", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            return _report("error", f"malformed block: {exc}", None)
        declared = document.get("block_height")
        if declared != len(blocks):
            return _report(
                "inconsistent",
                f"block_height {declared} does not match {len(blocks)} blocks",
                None,
            )
        report = check_blocks(blocks, verify_hashes=verify_hashes)
        if report["status"] != "consistent":
            logger.warning("Chain inconsistency at index %s: %s", report["index"], report["detail"])
        return report
