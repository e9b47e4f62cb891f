"""Inputs and results of Ledger Manager operations."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar

from pharma_ledger.errors import ValidationError


@dataclass(frozen=True)
class _Params:
    optional: ClassVar[frozenset[str]] = frozenset({"description", "location", "user_id"})

    def __post_init__(self) -> None:
        for f in fields(self):
            if f.name in self.optional:
                continue
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{f.name} is required")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CreateDrugParams(_Params):
    drug_id: str
    manufacturer_id: str
    name: str
    description: str = ""
    location: str = ""
    user_id: str = ""


@dataclass(frozen=True)
class CreateShipmentParams(_Params):
    shipment_id: str
    drug_id: str
    manufacturer_id: str
    distributor_id: str
    location: str = ""
    user_id: str = ""


@dataclass(frozen=True)
class UpdateShipmentStatusParams(_Params):
    shipment_id: str
    status: str
    location: str = ""
    user_id: str = ""


@dataclass(frozen=True)
class RevertDrugParams(_Params):
    drug_id: str
    reason: str
    user_id: str = ""


@dataclass
class OperationResult:
    """Outcome of one manager operation.

    ``tx_hashes`` lists the chain transactions in the order they were
    appended; the first is the operation's own, any further ones are
    cascades linked to it.
    """

    op_id: str
    kind: str
    tx_hashes: list[str] = field(default_factory=list)
    verification_hash: str | None = None

    @property
    def tx_hash(self) -> str:
        return self.tx_hashes[0] if self.tx_hashes else ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "op_id": self.op_id,
            "kind": self.kind,
            "tx_hash": self.tx_hash,
            "tx_hashes": list(self.tx_hashes),
        }
        if self.verification_hash is not None:
            data["verification_hash"] = self.verification_hash
        return data
