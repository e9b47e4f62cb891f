"""File persistence primitives shared by every file-backed component.

Two write disciplines are used across the service:

Whole-document JSON (chain ledger, manufacturer ledgers, common ledger)
    The document is serialised to a temporary sibling file, flushed and
    fsync'd, then moved over the target with :func:`os.replace`.  Readers
    therefore see either the previous or the new document, never a torn
    write.

Append-only JSONL (idempotency tracker, outbox, dead letters, sync log)
    Each record is a single newline-terminated JSON line appended under an
    exclusive POSIX file lock (``fcntl.LOCK_EX``).  Records may embed a
    ``_checksum`` of their own body so that corrupted lines are detected and
    skipped on read instead of poisoning the whole log.

Platform note
-------------
``fcntl`` is POSIX-only (Darwin + Linux).  Windows is not supported.

Every function here raises :exc:`~pharma_ledger.errors.LedgerWriteError`
(never a bare :exc:`OSError`) on write failure so callers can treat local
I/O failures as transient.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pharma_ledger.errors import LedgerWriteError

logger = logging.getLogger(__name__)

_CHECKSUM_FIELD = "_checksum"


def canonical_json(payload: Any) -> str:
    """Serialise ``payload`` deterministically.

    Keys are sorted and separators carry no whitespace, so two dicts with the
    same content always produce the same bytes regardless of insertion order.
    """
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def sha256_hex(text: str) -> str:
    """64-character lowercase hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_checksum(payload: dict) -> str:
    """SHA-256 of the canonical serialisation of ``payload``.

    The ``_checksum`` field must not be present in ``payload``.
    """
    return sha256_hex(canonical_json(payload))


# ── Whole-document JSON ──────────────────────────────────────────────────────


def read_json(path: Path) -> Any | None:
    """Load a JSON document, or return ``None`` if the file does not exist."""
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def atomic_write_json(path: Path, document: Any) -> None:
    """Replace ``path`` with ``document`` using write-to-temp then rename.

    Raises:
        LedgerWriteError: If the directory, temp file, or rename fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            # Leave no stray temp file behind, then re-raise.
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise LedgerWriteError(f"failed to write {path}: {exc}", cause=exc) from exc


# ── Append-only JSONL ────────────────────────────────────────────────────────


def append_jsonl(path: Path, record: Any, *, checksum: bool = False, sync: bool = True) -> None:
    """Append one record to a JSONL file under an exclusive lock.

    Args:
        path: Target file.  Parent directories are created on demand.
        record: JSON-serialisable value.  When ``checksum`` is true it must
            be a dict; a ``_checksum`` field is added over its body.
        checksum: Embed a ``sha256:`` checksum of the record body.
        sync: ``fsync`` before releasing the lock so the record is durable
            when this function returns.

    Raises:
        LedgerWriteError: If the filesystem write fails for any reason.
    """
    if checksum:
        record = {**record, _CHECKSUM_FIELD: f"sha256:{compute_checksum(record)}"}
    line = json.dumps(record, ensure_ascii=False, sort_keys=True)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fcntl.flock(fh, fcntl.LOCK_EX)
            try:
                fh.write(line + "\n")
                fh.flush()
                if sync:
                    os.fsync(fh.fileno())
            finally:
                # Always release the lock, even if the write raised.
                fcntl.flock(fh, fcntl.LOCK_UN)
    except OSError as exc:
        raise LedgerWriteError(f"failed to append to {path}: {exc}", cause=exc) from exc


def iter_jsonl(path: Path, *, checksum: bool = False) -> Iterator[Any]:
    """Yield every valid record of a JSONL file in append order.

    Blank lines are ignored.  Lines that are not valid JSON, or whose
    embedded checksum does not match when ``checksum`` is true, are skipped
    with a warning.
    """
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as fh:
        for lineno, raw in enumerate(fh, start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                record = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("%s:%d: skipping malformed line", path.name, lineno)
                continue
            if checksum:
                if not isinstance(record, dict) or not _checksum_ok(record):
                    logger.warning("%s:%d: skipping line with bad checksum", path.name, lineno)
                    continue
                record.pop(_CHECKSUM_FIELD, None)
            yield record


def _checksum_ok(record: dict) -> bool:
    stored = record.get(_CHECKSUM_FIELD)
    if not isinstance(stored, str) or not stored.startswith("sha256:"):
        return False
    body = {k: v for k, v in record.items() if k != _CHECKSUM_FIELD}
    return stored == f"sha256:{compute_checksum(body)}"
