"""Manufacturer and common ledger models.

A manufacturer ledger holds the drugs and shipments of one manufacturer; the
common ledger aggregates every manufacturer's records and additionally
carries the drug ``verification_hash`` and the shipment ``distributor_id``.

Both ledger types share the same operations:

- ``add_drug`` / ``add_shipment`` raise :class:`ConflictError` for a
  duplicate id.
- ``update_drug_status`` / ``update_shipment_status`` raise
  :class:`NotFoundError` for an unknown id.
- Every status change appends exactly one :class:`Status` entry and
  refreshes ``last_updated``.  History entries are never edited or removed.

These are plain in-memory objects; :mod:`pharma_ledger.ledgers.storage`
handles locking and persistence.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pharma_ledger.errors import ConflictError, NotFoundError, OperationContext
from pharma_ledger.timeutil import now_iso


@dataclass(frozen=True)
class Status:
    """One immutable history entry."""

    status: str
    timestamp: str
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "timestamp": self.timestamp}
        if self.details:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Status:
        return cls(
            status=str(raw["status"]),
            timestamp=str(raw["timestamp"]),
            details=raw.get("details") or None,
        )


# =============================================================================
# RECORDS
# =============================================================================


@dataclass(kw_only=True)
class DrugRecord:
    drug_id: str
    status: str
    current_status: str
    created_at: str
    reverted_at: str | None = None
    history: list[Status] = field(default_factory=list)

    def set_status(self, new_status: str, timestamp: str, details: str | None) -> None:
        self.status = new_status
        self.current_status = new_status
        self.history.append(Status(new_status, timestamp, details))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "drug_id": self.drug_id,
            "status": self.status,
            "current_status": self.current_status,
            "created_at": self.created_at,
            "history": [entry.to_dict() for entry in self.history],
        }
        if self.reverted_at:
            data["reverted_at"] = self.reverted_at
        return data

    @classmethod
    def _common_kwargs(cls, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "drug_id": str(raw["drug_id"]),
            "status": str(raw["status"]),
            "current_status": str(raw.get("current_status") or raw["status"]),
            "created_at": str(raw.get("created_at", "")),
            "reverted_at": raw.get("reverted_at") or None,
            "history": [Status.from_dict(entry) for entry in raw.get("history", [])],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> DrugRecord:
        return cls(**cls._common_kwargs(raw))


@dataclass(kw_only=True)
class CommonDrugRecord(DrugRecord):
    manufacturer_id: str
    verification_hash: str

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["manufacturer_id"] = self.manufacturer_id
        data["verification_hash"] = self.verification_hash
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CommonDrugRecord:
        return cls(
            **cls._common_kwargs(raw),
            manufacturer_id=str(raw.get("manufacturer_id", "")),
            verification_hash=str(raw.get("verification_hash", "")),
        )


@dataclass(kw_only=True)
class ShipmentRecord:
    shipment_id: str
    drug_id: str
    status: str
    current_status: str
    created_at: str
    history: list[Status] = field(default_factory=list)

    def set_status(self, new_status: str, timestamp: str, details: str | None) -> None:
        self.status = new_status
        self.current_status = new_status
        self.history.append(Status(new_status, timestamp, details))

    def to_dict(self) -> dict[str, Any]:
        return {
            "shipment_id": self.shipment_id,
            "drug_id": self.drug_id,
            "status": self.status,
            "current_status": self.current_status,
            "created_at": self.created_at,
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def _common_kwargs(cls, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "shipment_id": str(raw["shipment_id"]),
            "drug_id": str(raw.get("drug_id", "")),
            "status": str(raw["status"]),
            "current_status": str(raw.get("current_status") or raw["status"]),
            "created_at": str(raw.get("created_at", "")),
            "history": [Status.from_dict(entry) for entry in raw.get("history", [])],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ShipmentRecord:
        return cls(**cls._common_kwargs(raw))


@dataclass(kw_only=True)
class CommonShipmentRecord(ShipmentRecord):
    manufacturer_id: str
    distributor_id: str

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["manufacturer_id"] = self.manufacturer_id
        data["distributor_id"] = self.distributor_id
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CommonShipmentRecord:
        return cls(
            **cls._common_kwargs(raw),
            manufacturer_id=str(raw.get("manufacturer_id", "")),
            distributor_id=str(raw.get("distributor_id", "")),
        )


# =============================================================================
# LEDGERS
# =============================================================================


class _Ledger:
    """Drug/shipment bookkeeping shared by both ledger types."""

    drug_cls: ClassVar[type[DrugRecord]] = DrugRecord
    shipment_cls: ClassVar[type[ShipmentRecord]] = ShipmentRecord
    label: ClassVar[str] = "ledger"

    def __init__(
        self,
        drugs: list | None = None,
        shipments: list | None = None,
        last_updated: str | None = None,
    ) -> None:
        self.drugs: list[Any] = list(drugs or [])
        self.shipments: list[Any] = list(shipments or [])
        self.last_updated = last_updated or now_iso()

    # -- lookups ----------------------------------------------------------

    def find_drug(self, drug_id: str) -> Any | None:
        for record in self.drugs:
            if record.drug_id == drug_id:
                return record
        return None

    def find_shipment(self, shipment_id: str) -> Any | None:
        for record in self.shipments:
            if record.shipment_id == shipment_id:
                return record
        return None

    def get_drug(self, drug_id: str) -> Any:
        record = self.find_drug(drug_id)
        if record is None:
            raise NotFoundError(
                f"drug {drug_id} not found",
                context=OperationContext(f"{self.label}.get_drug"),
            )
        return record

    def get_shipment(self, shipment_id: str) -> Any:
        record = self.find_shipment(shipment_id)
        if record is None:
            raise NotFoundError(
                f"shipment {shipment_id} not found",
                context=OperationContext(f"{self.label}.get_shipment"),
            )
        return record

    def get_drug_history(self, drug_id: str) -> list[Status]:
        return list(self.get_drug(drug_id).history)

    def get_shipment_history(self, shipment_id: str) -> list[Status]:
        return list(self.get_shipment(shipment_id).history)

    # -- mutations --------------------------------------------------------

    def _add_drug(self, drug_id: str, status: str, timestamp: str | None, details: str | None, **extra: Any):
        if self.find_drug(drug_id) is not None:
            raise ConflictError(
                f"drug {drug_id} already exists",
                context=OperationContext(f"{self.label}.add_drug"),
            )
        timestamp = timestamp or now_iso()
        record = self.drug_cls(
            drug_id=drug_id,
            status=status,
            current_status=status,
            created_at=timestamp,
            history=[Status(status, timestamp, details)],
            **extra,
        )
        self.drugs.append(record)
        self.last_updated = timestamp
        return record

    def _add_shipment(
        self,
        shipment_id: str,
        drug_id: str,
        status: str,
        timestamp: str | None,
        details: str | None,
        **extra: Any,
    ):
        if self.find_shipment(shipment_id) is not None:
            raise ConflictError(
                f"shipment {shipment_id} already exists",
                context=OperationContext(f"{self.label}.add_shipment"),
            )
        timestamp = timestamp or now_iso()
        record = self.shipment_cls(
            shipment_id=shipment_id,
            drug_id=drug_id,
            status=status,
            current_status=status,
            created_at=timestamp,
            history=[Status(status, timestamp, details)],
            **extra,
        )
        self.shipments.append(record)
        self.last_updated = timestamp
        return record

    def update_drug_status(
        self,
        drug_id: str,
        new_status: str,
        details: str | None = None,
        *,
        timestamp: str | None = None,
    ):
        """Append one status entry to a drug's history."""
        record = self.get_drug(drug_id)
        timestamp = timestamp or now_iso()
        record.set_status(new_status, timestamp, details)
        self.last_updated = timestamp
        return record

    def revert_drug(self, drug_id: str, reason: str, *, timestamp: str | None = None):
        """Move a drug to ``reverted`` and stamp ``reverted_at``."""
        timestamp = timestamp or now_iso()
        record = self.update_drug_status(
            drug_id, "reverted", f"Drug reverted: {reason}", timestamp=timestamp
        )
        record.reverted_at = timestamp
        return record

    def update_shipment_status(
        self,
        shipment_id: str,
        new_status: str,
        details: str | None = None,
        *,
        timestamp: str | None = None,
    ):
        """Append one status entry to a shipment's history."""
        record = self.get_shipment(shipment_id)
        timestamp = timestamp or now_iso()
        record.set_status(new_status, timestamp, details)
        self.last_updated = timestamp
        return record

    # -- serialisation ----------------------------------------------------

    def _base_dict(self) -> dict[str, Any]:
        return {
            "drugs": [record.to_dict() for record in self.drugs],
            "shipments": [record.to_dict() for record in self.shipments],
            "last_updated": self.last_updated,
        }


class ManufacturerLedger(_Ledger):
    """Drugs and shipments owned by one manufacturer."""

    label = "manufacturer_ledger"

    def __init__(self, manufacturer_id: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.manufacturer_id = manufacturer_id

    def add_drug(
        self,
        drug_id: str,
        status: str = "created",
        *,
        timestamp: str | None = None,
        details: str | None = "Drug created",
    ) -> DrugRecord:
        return self._add_drug(drug_id, status, timestamp, details)

    def add_shipment(
        self,
        shipment_id: str,
        drug_id: str,
        status: str = "created",
        *,
        timestamp: str | None = None,
        details: str | None = "Shipment created",
    ) -> ShipmentRecord:
        return self._add_shipment(shipment_id, drug_id, status, timestamp, details)

    def to_dict(self) -> dict[str, Any]:
        return {"manufacturer_id": self.manufacturer_id, **self._base_dict()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ManufacturerLedger:
        return cls(
            str(raw["manufacturer_id"]),
            drugs=[DrugRecord.from_dict(r) for r in raw.get("drugs", [])],
            shipments=[ShipmentRecord.from_dict(r) for r in raw.get("shipments", [])],
            last_updated=raw.get("last_updated"),
        )


class CommonLedger(_Ledger):
    """Cross-manufacturer aggregate used for verification and distributor queries."""

    drug_cls = CommonDrugRecord
    shipment_cls = CommonShipmentRecord
    label = "common_ledger"

    def add_drug(
        self,
        drug_id: str,
        status: str = "created",
        *,
        manufacturer_id: str,
        verification_hash: str,
        timestamp: str | None = None,
        details: str | None = "Drug created",
    ) -> CommonDrugRecord:
        return self._add_drug(
            drug_id,
            status,
            timestamp,
            details,
            manufacturer_id=manufacturer_id,
            verification_hash=verification_hash,
        )

    def add_shipment(
        self,
        shipment_id: str,
        drug_id: str,
        status: str = "created",
        *,
        manufacturer_id: str,
        distributor_id: str,
        timestamp: str | None = None,
        details: str | None = "Shipment created",
    ) -> CommonShipmentRecord:
        return self._add_shipment(
            shipment_id,
            drug_id,
            status,
            timestamp,
            details,
            manufacturer_id=manufacturer_id,
            distributor_id=distributor_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return self._base_dict()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CommonLedger:
        return cls(
            drugs=[CommonDrugRecord.from_dict(r) for r in raw.get("drugs", [])],
            shipments=[CommonShipmentRecord.from_dict(r) for r in raw.get("shipments", [])],
            last_updated=raw.get("last_updated"),
        )
