"""
Tests for the Ledger Manager.

Tests cover:
- Drug creation across chain, both ledgers and the store
- Shipment creation and the in_transit cascade
- Status updates and the delivered cascade
- Drug reverts
- Drug verification
- Partial failures, consistency reports and outbox replay
- Per-entity serialisation of concurrent operations
"""

from __future__ import annotations

import threading

import pytest

from pharma_ledger.chain.transactions import validate
from pharma_ledger.core.manager import compute_verification_hash
from pharma_ledger.core.params import (
    CreateDrugParams,
    CreateShipmentParams,
    RevertDrugParams,
    UpdateShipmentStatusParams,
)
from pharma_ledger.errors import (
    ConflictError,
    InvalidTransitionError,
    LedgerWriteError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from tests.constants import DISTRIBUTOR_ID, MANUFACTURER_ID, OTHER_MANUFACTURER_ID


def _set_status(manager, status: str, shipment_id: str = "SHIP-001", **kwargs):
    return manager.update_shipment_status(
        UpdateShipmentStatusParams(shipment_id=shipment_id, status=status, **kwargs)
    )


# ============================================================================
# DRUG CREATION
# ============================================================================


@pytest.mark.unit
class TestCreateDrug:
    def test_writes_every_store(self, services, make_drug) -> None:
        result = make_drug(location="Plant 4", user_id="qa-1")

        chain = services.chain
        assert chain.block_height == 1
        assert chain.contains(result.tx_hash)

        common_drug = services.ledgers.load_common().get_drug("DRUG-001")
        assert common_drug.status == "created"
        assert common_drug.verification_hash == result.verification_hash
        assert common_drug.history[0].details == "Drug created"

        local = services.ledgers.load_manufacturer(MANUFACTURER_ID).get_drug("DRUG-001")
        assert local.created_at == common_drug.created_at

        [row] = services.store.select("drugs", "*", {"drug_id": "DRUG-001"})
        assert row["blockchain_tx_id"] == result.tx_hash
        assert row["verification_hash"] == result.verification_hash
        [update] = services.store.select("drug_status_updates", "*", {"drug_id": "DRUG-001"})
        assert update["status"] == "created"
        assert update["location"] == "Plant 4"
        assert update["updated_by"] == "qa-1"

    def test_verification_hash_binds_identity_and_time(self, services, make_drug) -> None:
        result = make_drug()
        created_at = services.ledgers.load_common().get_drug("DRUG-001").created_at

        assert result.verification_hash == compute_verification_hash(
            "DRUG-001", MANUFACTURER_ID, created_at
        )

    def test_chain_payload_is_drug_create(self, services, make_drug) -> None:
        result = make_drug(description="Blister pack")

        data = services.chain.get_block(result.tx_hash).tx_data["data"]

        assert data["tx_type"] == "drug_create"
        assert data["description"] == "Blister pack"
        assert data["verification_hash"] == result.verification_hash

    def test_duplicate_id_rejected_across_manufacturers(self, services, make_drug) -> None:
        make_drug()

        with pytest.raises(ConflictError):
            make_drug(manufacturer_id=OTHER_MANUFACTURER_ID)
        assert services.chain.block_height == 1
        assert not services.ledgers.manufacturer_exists(OTHER_MANUFACTURER_ID)

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(ValidationError, match="name"):
            CreateDrugParams(drug_id="D1", manufacturer_id=MANUFACTURER_ID, name=" ")

    def test_unsafe_manufacturer_id_rejected(self, services, make_drug) -> None:
        with pytest.raises(ValidationError):
            make_drug(manufacturer_id="../escape")
        assert services.chain.block_height == 0


# ============================================================================
# SHIPMENTS AND CASCADES
# ============================================================================


@pytest.mark.unit
class TestShipments:
    def test_create_shipment_moves_drug_in_transit(self, services, make_drug, make_shipment) -> None:
        make_drug()

        result = make_shipment()

        assert len(result.tx_hashes) == 2
        shipment_tx, cascade_tx = result.tx_hashes
        cascade = services.chain.get_block(cascade_tx)
        assert cascade.tx_data["previous_hash"] == shipment_tx
        assert cascade.tx_data["data"]["status"] == "in_transit"

        common = services.ledgers.load_common()
        assert common.get_shipment("SHIP-001").distributor_id == DISTRIBUTOR_ID
        assert common.get_drug("DRUG-001").status == "in_transit"
        assert common.get_drug_history("DRUG-001")[-1].details == "Drug added to shipment SHIP-001"
        local = services.ledgers.load_manufacturer(MANUFACTURER_ID)
        assert local.get_drug("DRUG-001").status == "in_transit"
        assert local.get_shipment("SHIP-001").status == "created"

        [drug_row] = services.store.select("drugs", "*", {"drug_id": "DRUG-001"})
        assert drug_row["status"] == "in_transit"
        assert drug_row["blockchain_tx_id"] == cascade_tx

    def test_full_delivery_scenario(self, services, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()

        moving = _set_status(manager, "in_transit", location="Hub A")
        delivered = _set_status(manager, "delivered", location="Pharmacy 9")

        assert len(moving.tx_hashes) == 1
        assert len(delivered.tx_hashes) == 2
        cascade = services.chain.get_block(delivered.tx_hashes[1])
        assert cascade.tx_data["previous_hash"] == delivered.tx_hash

        assert [h.status for h in manager.get_shipment_history("SHIP-001")] == [
            "created",
            "in_transit",
            "delivered",
        ]
        drug_history = manager.get_drug_history("DRUG-001")
        assert [h.status for h in drug_history] == ["created", "in_transit", "delivered"]
        assert drug_history[-1].details == "Drug delivered via shipment SHIP-001"

        assert services.chain.block_height == 6
        assert services.chain.consistency_check(verify_hashes=True)["status"] == "consistent"
        assert manager.consistency_check()["status"] == "consistent"

        shipment_updates = manager.get_shipment_status_updates("SHIP-001")
        assert [u["status"] for u in shipment_updates] == ["created", "in_transit", "delivered"]
        assert shipment_updates[-1]["location"] == "Pharmacy 9"
        assert manager.verify_drug("DRUG-001") is True

    def test_in_transit_location_updates_repeat(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()

        _set_status(manager, "in_transit", location="Hub A")
        _set_status(manager, "in_transit", location="Hub B")

        assert len(manager.get_shipment_history("SHIP-001")) == 3
        assert manager.get_drug("DRUG-001")["status"] == "in_transit"

    def test_second_shipment_for_drug_in_transit_rejected(
        self, services, make_drug, make_shipment
    ) -> None:
        make_drug()
        make_shipment()
        height = services.chain.block_height

        with pytest.raises(InvalidTransitionError):
            make_shipment(shipment_id="SHIP-002")
        assert services.chain.block_height == height
        assert services.ledgers.load_common().find_shipment("SHIP-002") is None

    def test_duplicate_shipment_id(self, make_drug, make_shipment) -> None:
        make_drug()
        make_drug(drug_id="DRUG-002")
        make_shipment()

        with pytest.raises(ConflictError):
            make_shipment(drug_id="DRUG-002")

    def test_drug_must_belong_to_manufacturer(self, make_drug, make_shipment) -> None:
        make_drug()

        with pytest.raises(NotFoundError):
            make_shipment(manufacturer_id=OTHER_MANUFACTURER_ID)

    def test_unknown_drug(self, make_shipment) -> None:
        with pytest.raises(NotFoundError):
            make_shipment(drug_id="NOPE")

    def test_terminal_shipment_rejects_updates(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()
        _set_status(manager, "delivered")

        with pytest.raises(InvalidTransitionError):
            _set_status(manager, "in_transit")

    def test_failed_shipment_leaves_drug_in_transit(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()

        result = _set_status(manager, "failed")

        assert len(result.tx_hashes) == 1
        assert manager.get_drug("DRUG-001")["status"] == "in_transit"

    def test_unknown_status(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()

        with pytest.raises(ValidationError):
            _set_status(manager, "lost")

    def test_unknown_shipment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            _set_status(manager, "delivered", shipment_id="NOPE")


# ============================================================================
# REVERTS
# ============================================================================


@pytest.mark.unit
class TestRevert:
    def test_revert_created_drug(self, services, manager, make_drug) -> None:
        make_drug()

        result = manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="recall", user_id="qa"))

        drug = manager.get_drug("DRUG-001")
        assert drug["status"] == "reverted"
        assert drug["reverted_at"]
        assert drug["history"][-1]["details"] == "Drug reverted: recall"
        assert services.chain.get_block(result.tx_hash).tx_data["data"]["tx_type"] == "drug_revert"
        [row] = services.store.select("drugs", "*", {"drug_id": "DRUG-001"})
        assert row["status"] == "reverted"
        assert row["reverted_at"] == drug["reverted_at"]

    def test_revert_is_terminal(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="recall"))

        with pytest.raises(InvalidTransitionError):
            manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="again"))
        with pytest.raises(InvalidTransitionError):
            make_shipment()

    def test_delivered_drug_cannot_be_reverted(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()
        _set_status(manager, "delivered")

        with pytest.raises(InvalidTransitionError):
            manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="late"))

    def test_delivery_after_revert_skips_drug_cascade(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()
        manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="tampered seal"))

        result = _set_status(manager, "delivered")

        assert len(result.tx_hashes) == 1
        assert manager.get_shipment("SHIP-001")["status"] == "delivered"
        assert manager.get_drug("DRUG-001")["status"] == "reverted"

    def test_unknown_drug(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.revert_drug(RevertDrugParams(drug_id="NOPE", reason="x"))


# ============================================================================
# VERIFICATION
# ============================================================================


@pytest.mark.unit
class TestVerifyDrug:
    def test_fresh_drug_verifies(self, manager, make_drug) -> None:
        make_drug()

        assert manager.verify_drug("DRUG-001") is True

    def test_verifies_after_cascade(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()

        assert manager.verify_drug("DRUG-001") is True

    def test_verifies_after_delivery(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_shipment()
        _set_status(manager, "delivered")

        assert manager.get_drug("DRUG-001")["status"] == "delivered"
        assert manager.verify_drug("DRUG-001") is True

    def test_verifies_after_revert(self, manager, make_drug) -> None:
        make_drug()
        manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="recall"))

        assert manager.get_drug("DRUG-001")["status"] == "reverted"
        assert manager.verify_drug("DRUG-001") is True

    def test_hash_mismatch(self, services, manager, make_drug) -> None:
        make_drug()
        services.store.update("drugs", "DRUG-001", {"verification_hash": "0" * 64})

        assert manager.verify_drug("DRUG-001") is False

    def test_unchained_row(self, services, manager, make_drug) -> None:
        make_drug()
        services.store.update("drugs", "DRUG-001", {"blockchain_tx_id": "pending"})

        assert manager.verify_drug("DRUG-001") is False

    def test_tx_not_on_chain(self, services, manager, make_drug) -> None:
        make_drug()
        services.store.update("drugs", "DRUG-001", {"blockchain_tx_id": "f" * 64})

        assert manager.verify_drug("DRUG-001") is False

    def test_unknown_drug(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.verify_drug("NOPE")

    def test_missing_store_row(self, services, manager, make_drug) -> None:
        make_drug()
        services.store.delete("drugs", {"drug_id": "DRUG-001"})

        with pytest.raises(NotFoundError, match="store"):
            manager.verify_drug("DRUG-001")

    def test_stored_tx_hash_validates(self, services, make_drug) -> None:
        result = make_drug()
        block = services.chain.get_block(result.tx_hash)

        assert validate(result.tx_hash, block.tx_data) is True


# ============================================================================
# QUERIES
# ============================================================================


@pytest.mark.unit
class TestQueries:
    def test_list_filters(self, manager, make_drug, make_shipment) -> None:
        make_drug()
        make_drug(drug_id="DRUG-002", manufacturer_id=OTHER_MANUFACTURER_ID)
        make_shipment()

        assert [d["drug_id"] for d in manager.list_drugs(OTHER_MANUFACTURER_ID)] == ["DRUG-002"]
        assert len(manager.list_drugs()) == 2
        assert len(manager.list_shipments(distributor_id=DISTRIBUTOR_ID)) == 1
        assert manager.list_shipments(manufacturer_id=OTHER_MANUFACTURER_ID) == []

    def test_manufacturer_ledger(self, manager, make_drug) -> None:
        make_drug()

        ledger = manager.get_manufacturer_ledger(MANUFACTURER_ID)

        assert ledger.manufacturer_id == MANUFACTURER_ID
        assert [d.drug_id for d in ledger.drugs] == ["DRUG-001"]
        with pytest.raises(NotFoundError):
            manager.get_manufacturer_ledger("MFR-NONE")

    def test_unknown_shipment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.get_shipment("NOPE")


# ============================================================================
# PARTIAL FAILURE AND RECONCILE
# ============================================================================


def _fail_inserts_into(store, monkeypatch, table: str) -> None:
    original = store.insert

    def _insert(target, row):
        if target == table:
            raise StoreError(f"{target} unavailable")
        return original(target, row)

    monkeypatch.setattr(store, "insert", _insert)


@pytest.mark.integration
class TestReconcile:
    def test_store_failure_leaves_open_intent(self, services, manager, store, monkeypatch) -> None:
        _fail_inserts_into(store, monkeypatch, "drugs")

        with pytest.raises(StoreError):
            manager.create_drug(
                CreateDrugParams(drug_id="DRUG-001", manufacturer_id=MANUFACTURER_ID, name="X")
            )

        assert services.chain.block_height == 1
        assert services.ledgers.load_common().find_drug("DRUG-001") is not None
        report = manager.consistency_check()
        assert report["status"] == "inconsistent"
        assert len(report["open_intents"]) == 1
        assert report["open_intents"][0]["completed"] == [0, 1, 2]
        assert "reconcile" in report["recommendation"]

    def test_reconcile_replays_remaining_steps(self, services, manager, store, monkeypatch) -> None:
        _fail_inserts_into(store, monkeypatch, "drug_status_updates")
        with pytest.raises(StoreError):
            manager.create_drug(
                CreateDrugParams(drug_id="DRUG-001", manufacturer_id=MANUFACTURER_ID, name="X")
            )
        assert len(store.rows("drugs")) == 1
        monkeypatch.undo()

        result = manager.reconcile()

        assert len(result["replayed"]) == 1
        assert result["failed"] == []
        assert len(store.rows("drugs")) == 1
        assert len(store.rows("drug_status_updates")) == 1
        assert services.chain.block_height == 1
        assert len(manager.get_drug_history("DRUG-001")) == 1
        assert manager.consistency_check()["status"] == "consistent"
        assert manager.verify_drug("DRUG-001") is True
        assert manager.reconcile() == {"replayed": [], "failed": []}

    def test_reconcile_failure_keeps_intent_open(self, manager, store, monkeypatch) -> None:
        _fail_inserts_into(store, monkeypatch, "drugs")
        with pytest.raises(StoreError):
            manager.create_drug(
                CreateDrugParams(drug_id="DRUG-001", manufacturer_id=MANUFACTURER_ID, name="X")
            )

        result = manager.reconcile()

        assert result["replayed"] == []
        assert result["failed"][0]["kind"] == "create_drug"
        assert len(manager.consistency_check()["open_intents"]) == 1

    def test_shipment_replay_does_not_duplicate_cascade(
        self, services, manager, store, monkeypatch, make_drug
    ) -> None:
        make_drug()
        _fail_inserts_into(store, monkeypatch, "shipments")
        with pytest.raises(StoreError):
            manager.create_shipment(
                CreateShipmentParams(
                    shipment_id="SHIP-001",
                    drug_id="DRUG-001",
                    manufacturer_id=MANUFACTURER_ID,
                    distributor_id=DISTRIBUTOR_ID,
                )
            )
        monkeypatch.undo()

        manager.reconcile()

        assert services.chain.block_height == 3
        assert [h.status for h in manager.get_drug_history("DRUG-001")] == ["created", "in_transit"]
        assert len(store.rows("shipments")) == 1
        assert len(manager.get_drug_status_updates("DRUG-001")) == 2

    def test_retry_before_reconcile_is_refused(self, services, manager, monkeypatch, make_drug) -> None:
        original = services.ledgers.update_manufacturer
        failures = iter([True])

        def _update(manufacturer_id, mutate):
            if next(failures, False):
                raise LedgerWriteError("disk full")
            return original(manufacturer_id, mutate)

        monkeypatch.setattr(services.ledgers, "update_manufacturer", _update)
        with pytest.raises(LedgerWriteError):
            make_drug()

        with pytest.raises(ConflictError, match="run reconcile"):
            make_drug()
        assert services.chain.block_height == 1

        result = manager.reconcile()

        assert len(result["replayed"]) == 1
        assert result["failed"] == []
        assert services.chain.block_height == 1
        assert manager.consistency_check()["status"] == "consistent"
        assert manager.verify_drug("DRUG-001") is True
        with pytest.raises(ConflictError, match="already exists"):
            make_drug()

    def test_unfinished_shipment_blocks_drug_operations(
        self, services, manager, store, monkeypatch, make_drug, make_shipment
    ) -> None:
        make_drug()
        _fail_inserts_into(store, monkeypatch, "shipments")
        with pytest.raises(StoreError):
            make_shipment()
        monkeypatch.undo()

        with pytest.raises(ConflictError, match="unfinished create_shipment"):
            manager.revert_drug(RevertDrugParams(drug_id="DRUG-001", reason="recall"))
        with pytest.raises(ConflictError, match="unfinished create_shipment"):
            _set_status(manager, "delivered")

        manager.reconcile()
        _set_status(manager, "delivered")

        assert manager.get_drug("DRUG-001")["status"] == "delivered"
        assert services.chain.block_height == 5

    def test_ledger_divergence_reported(self, services, manager, make_drug) -> None:
        make_drug()
        services.ledgers.update_manufacturer(
            MANUFACTURER_ID,
            lambda ledger: ledger.update_drug_status("DRUG-001", "in_transit", "edited"),
        )

        report = manager.consistency_check()

        assert report["status"] == "inconsistent"
        assert "DRUG-001" in report["ledger_mismatches"][0]


# ============================================================================
# CONCURRENCY
# ============================================================================


@pytest.mark.slow
def test_concurrent_shipments_for_one_drug(services, make_drug, make_shipment):
    """Exactly one of several racing shipments for the same drug succeeds."""
    make_drug()
    outcomes: list[str] = []
    lock = threading.Lock()

    def _ship(i: int) -> None:
        try:
            make_shipment(shipment_id=f"SHIP-{i:03d}")
            outcome = "ok"
        except InvalidTransitionError:
            outcome = "rejected"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_ship, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok"] + ["rejected"] * 5
    assert len(services.ledgers.load_common().shipments) == 1
    assert services.chain.consistency_check()["status"] == "consistent"
