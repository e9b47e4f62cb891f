"""Chain transactions and their typed payloads.

Hashing
-------
A transaction's hash binds its creation time, its payload and its link to a
predecessor::

    hash = SHA256(timestamp ∥ canonical_json(data) ∥ previous_hash)

``canonical_json`` sorts keys and strips whitespace, so the digest depends
only on content.  Changing ``previous_hash`` (re-linking) recomputes the
hash; nothing else may change a transaction once it is hashed.

Stored envelope
---------------
Blocks persist the envelope ``{"timestamp", "data", "previous_hash"}`` as
their ``tx_data``.  :func:`validate` recomputes the hash from exactly those
three values, so verification always uses the timestamp captured at
creation.

Payload variants
----------------
Each ``tx_type`` has a frozen dataclass with a fixed field set.  Payloads are
validated on construction and turned into a plain mapping only at the
storage boundary via :meth:`TxPayload.to_data`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar

from pharma_ledger.errors import ValidationError
from pharma_ledger.storage.files import canonical_json, sha256_hex
from pharma_ledger.timeutil import now_iso

# =============================================================================
# TYPED PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class TxPayload:
    """Base class for transaction payload variants.

    Subclasses set :attr:`tx_type` and list the string fields that may be
    empty in :attr:`optional`; every other ``str`` field must be non-blank.
    """

    tx_type: ClassVar[str] = ""
    optional: ClassVar[frozenset[str]] = frozenset()

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self.optional:
                continue
            if isinstance(value, str) and not value.strip():
                raise ValidationError(f"{self.tx_type}: missing required field {f.name!r}")

    def to_data(self) -> dict[str, Any]:
        """Plain mapping stored as the transaction ``data``."""
        return {"tx_type": self.tx_type, **asdict(self)}


@dataclass(frozen=True)
class DrugCreate(TxPayload):
    tx_type: ClassVar[str] = "drug_create"
    optional: ClassVar[frozenset[str]] = frozenset({"description"})

    drug_id: str
    manufacturer_id: str
    name: str
    verification_hash: str
    created_at: str
    description: str = ""


@dataclass(frozen=True)
class DrugUpdate(TxPayload):
    tx_type: ClassVar[str] = "drug_update"
    optional: ClassVar[frozenset[str]] = frozenset({"updated_by"})

    drug_id: str
    status: str
    updated_at: str
    updated_by: str = ""


@dataclass(frozen=True)
class DrugRevert(TxPayload):
    tx_type: ClassVar[str] = "drug_revert"
    optional: ClassVar[frozenset[str]] = frozenset({"updated_by"})

    drug_id: str
    reason: str
    updated_at: str
    updated_by: str = ""


@dataclass(frozen=True)
class ShipmentCreate(TxPayload):
    tx_type: ClassVar[str] = "shipment_create"

    shipment_id: str
    drug_id: str
    manufacturer_id: str
    distributor_id: str
    created_at: str


@dataclass(frozen=True)
class ShipmentUpdate(TxPayload):
    tx_type: ClassVar[str] = "shipment_update"
    optional: ClassVar[frozenset[str]] = frozenset({"updated_by"})

    shipment_id: str
    status: str
    updated_at: str
    updated_by: str = ""


@dataclass(frozen=True)
class RecordSync(TxPayload):
    """A store row picked up by periodic sync or webhook ingest."""

    tx_type: ClassVar[str] = "record_sync"

    table: str
    record_id: str
    record: Mapping[str, Any] = field(default_factory=dict)

    def to_data(self) -> dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "table": self.table,
            "record_id": self.record_id,
            "record": dict(self.record),
        }


PAYLOAD_TYPES: dict[str, type[TxPayload]] = {
    cls.tx_type: cls
    for cls in (DrugCreate, DrugUpdate, DrugRevert, ShipmentCreate, ShipmentUpdate, RecordSync)
}


def parse_payload(data: Mapping[str, Any]) -> TxPayload:
    """Rebuild the typed payload from a stored ``data`` mapping.

    Raises:
        ValidationError: Unknown ``tx_type``, or missing/unexpected fields.
    """
    tx_type = data.get("tx_type")
    cls = PAYLOAD_TYPES.get(tx_type) if isinstance(tx_type, str) else None
    if cls is None:
        raise ValidationError(f"unknown transaction type {tx_type!r}")
    kwargs = {k: v for k, v in data.items() if k != "tx_type"}
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"{tx_type}: {exc}") from exc


# =============================================================================
# TRANSACTION
# =============================================================================


def compute_hash(timestamp: str, data: Mapping[str, Any], previous_hash: str = "") -> str:
    """SHA-256 over ``timestamp ∥ canonical_json(data) ∥ previous_hash``."""
    return sha256_hex(f"{timestamp}{canonical_json(dict(data))}{previous_hash}")


@dataclass
class Transaction:
    """One hashed chain transaction.

    Attributes:
        timestamp: Creation time (ISO-8601 UTC).  Part of the hash input.
        data: Payload mapping, always carrying ``tx_type``.
        previous_hash: Hash of the logically preceding transaction, or ``""``.
        hash: Digest over the three fields above.
    """

    timestamp: str
    data: dict[str, Any]
    previous_hash: str = ""
    hash: str = ""

    def __post_init__(self) -> None:
        if not self.hash:
            self.hash = compute_hash(self.timestamp, self.data, self.previous_hash)

    @property
    def tx_type(self) -> str:
        return str(self.data.get("tx_type", ""))

    def set_previous_hash(self, previous_hash: str) -> None:
        """Re-link this transaction and recompute its hash."""
        self.previous_hash = previous_hash
        self.hash = compute_hash(self.timestamp, self.data, self.previous_hash)

    def envelope(self) -> dict[str, Any]:
        """The mapping persisted as a block's ``tx_data``."""
        return {
            "timestamp": self.timestamp,
            "data": self.data,
            "previous_hash": self.previous_hash,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.envelope(), "hash": self.hash}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Transaction:
        """Rebuild a transaction, recomputing its hash from the stored fields."""
        return cls(
            timestamp=str(raw["timestamp"]),
            data=dict(raw["data"]),
            previous_hash=str(raw.get("previous_hash") or ""),
        )


def create_transaction(
    payload: TxPayload | Mapping[str, Any],
    *,
    timestamp: str | None = None,
    previous_hash: str = "",
) -> Transaction:
    """Stamp and hash a new transaction.

    Args:
        payload: Typed payload, or an already-flattened ``data`` mapping.
        timestamp: Creation time; defaults to now.  Callers that need a
            deterministic hash for the same logical change pass a fixed one.
        previous_hash: Optional link to a related transaction.
    """
    data = payload.to_data() if isinstance(payload, TxPayload) else dict(payload)
    return Transaction(
        timestamp=timestamp or now_iso(),
        data=data,
        previous_hash=previous_hash,
    )


def set_previous_hash(tx: Transaction, previous_hash: str) -> Transaction:
    """Re-link ``tx`` to ``previous_hash`` and return it."""
    tx.set_previous_hash(previous_hash)
    return tx


def validate(tx_hash: str, tx_data: Mapping[str, Any]) -> bool:
    """Recompute the hash of a stored envelope and compare with ``tx_hash``.

    ``tx_data`` is the block envelope ``{"timestamp", "data",
    "previous_hash"}``.  A missing ``previous_hash`` is treated as unlinked.
    Malformed envelopes validate as ``False``.
    """
    timestamp = tx_data.get("timestamp")
    data = tx_data.get("data")
    if not isinstance(timestamp, str) or not isinstance(data, Mapping):
        return False
    previous_hash = tx_data.get("previous_hash") or ""
    if not isinstance(previous_hash, str):
        return False
    return compute_hash(timestamp, data, previous_hash) == tx_hash
