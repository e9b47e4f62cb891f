"""File persistence helpers (atomic JSON documents and locked JSONL logs)."""

from pharma_ledger.storage.files import (
    append_jsonl,
    atomic_write_json,
    canonical_json,
    compute_checksum,
    iter_jsonl,
    read_json,
    sha256_hex,
)

__all__ = [
    "append_jsonl",
    "atomic_write_json",
    "canonical_json",
    "compute_checksum",
    "iter_jsonl",
    "read_json",
    "sha256_hex",
]
