"""Unit tests for manufacturer and common ledger models."""

from __future__ import annotations

import pytest

from pharma_ledger.errors import ConflictError, NotFoundError
from pharma_ledger.ledgers.models import CommonLedger, ManufacturerLedger, Status


@pytest.mark.unit
class TestManufacturerLedger:
    def test_add_drug_starts_history(self) -> None:
        ledger = ManufacturerLedger("M1")

        record = ledger.add_drug("D1", timestamp="t1")

        assert record.status == record.current_status == "created"
        assert record.created_at == "t1"
        assert record.history == [Status("created", "t1", "Drug created")]
        assert ledger.last_updated == "t1"

    def test_duplicate_drug(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_drug("D1")

        with pytest.raises(ConflictError):
            ledger.add_drug("D1")

    def test_status_updates_append_history(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_drug("D1", timestamp="t1")

        ledger.update_drug_status("D1", "in_transit", "Drug added to shipment S1", timestamp="t2")

        history = ledger.get_drug_history("D1")
        assert [h.status for h in history] == ["created", "in_transit"]
        assert ledger.get_drug("D1").current_status == "in_transit"
        assert ledger.last_updated == "t2"

    def test_history_copy_is_detached(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_drug("D1")

        ledger.get_drug_history("D1").clear()

        assert len(ledger.get_drug_history("D1")) == 1

    def test_revert_sets_reverted_at(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_drug("D1", timestamp="t1")

        record = ledger.revert_drug("D1", "recall", timestamp="t2")

        assert record.status == "reverted"
        assert record.reverted_at == "t2"
        assert record.history[-1].details == "Drug reverted: recall"

    def test_unknown_ids(self) -> None:
        ledger = ManufacturerLedger("M1")

        with pytest.raises(NotFoundError):
            ledger.update_drug_status("nope", "in_transit")
        with pytest.raises(NotFoundError):
            ledger.update_shipment_status("nope", "delivered")
        with pytest.raises(NotFoundError):
            ledger.get_shipment_history("nope")

    def test_shipments(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_shipment("S1", "D1", timestamp="t1")

        with pytest.raises(ConflictError):
            ledger.add_shipment("S1", "D1")
        ledger.update_shipment_status("S1", "delivered", "Shipment status updated to delivered")

        assert ledger.get_shipment("S1").status == "delivered"
        assert len(ledger.get_shipment_history("S1")) == 2

    def test_round_trip(self) -> None:
        ledger = ManufacturerLedger("M1")
        ledger.add_drug("D1", timestamp="t1")
        ledger.revert_drug("D1", "damaged", timestamp="t2")
        ledger.add_shipment("S1", "D1", timestamp="t3")

        restored = ManufacturerLedger.from_dict(ledger.to_dict())

        assert restored.to_dict() == ledger.to_dict()
        assert restored.get_drug("D1").reverted_at == "t2"


@pytest.mark.unit
class TestCommonLedger:
    def test_carries_cross_manufacturer_fields(self) -> None:
        ledger = CommonLedger()
        ledger.add_drug("D1", manufacturer_id="M1", verification_hash="v" * 64, timestamp="t1")
        ledger.add_shipment("S1", "D1", manufacturer_id="M1", distributor_id="X1", timestamp="t2")

        data = ledger.to_dict()

        assert data["drugs"][0]["verification_hash"] == "v" * 64
        assert data["drugs"][0]["manufacturer_id"] == "M1"
        assert data["shipments"][0]["distributor_id"] == "X1"

    def test_round_trip(self) -> None:
        ledger = CommonLedger()
        ledger.add_drug("D1", manufacturer_id="M1", verification_hash="v", timestamp="t1")
        ledger.update_drug_status("D1", "in_transit", "moving", timestamp="t2")

        restored = CommonLedger.from_dict(ledger.to_dict())

        assert restored.get_drug("D1").verification_hash == "v"
        assert restored.get_drug_history("D1")[-1] == Status("in_transit", "t2", "moving")
