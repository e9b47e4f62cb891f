"""
Tests for the periodic sync engine.

Covers chaining of unchained rows, idempotence across cycles, per-table
error isolation, the single-flight table lock, lifecycle errors and the
sync log.
"""

from __future__ import annotations

import threading
import time

import pytest

from pharma_ledger.errors import ConflictError, StoreError, ValidationError
from pharma_ledger.store.memory import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    """Store pre-populated with one chained and two unchained drugs."""
    return InMemoryStore(
        {
            "drugs": [
                {"drug_id": "D1", "name": "A", "blockchain_tx_id": None, "created_at": "2025-01-01T00:00:00+00:00"},
                {"drug_id": "D2", "name": "B", "blockchain_tx_id": "pending"},
                {"drug_id": "D3", "name": "C", "blockchain_tx_id": "e" * 64},
            ],
            "shipments": [],
        }
    )


@pytest.mark.unit
class TestPull:
    def test_unchained_rows_are_chained(self, services, store) -> None:
        [drugs, shipments] = services.sync.run_cycle()

        assert drugs.table == "drugs"
        assert drugs.status == "success"
        assert drugs.records_received == 3
        assert drugs.records_chained == 2
        assert drugs.records_sent == 0
        assert shipments.records_received == 0

        rows = {row["drug_id"]: row for row in store.rows("drugs")}
        assert rows["D3"]["blockchain_tx_id"] == "e" * 64
        for rid in ("D1", "D2"):
            tx_id = rows[rid]["blockchain_tx_id"]
            assert services.chain.contains(tx_id)
            assert services.tracker.is_processed(tx_id)
            data = services.chain.get_block(tx_id).tx_data["data"]
            assert data["tx_type"] == "record_sync"
            assert data["record_id"] == rid
            assert "blockchain_tx_id" not in data["record"]

    def test_row_timestamp_feeds_transaction(self, services, store) -> None:
        services.sync.run_cycle()

        tx_id = store.select("drugs", "*", {"drug_id": "D1"})[0]["blockchain_tx_id"]

        assert services.chain.get_block(tx_id).tx_data["timestamp"] == "2025-01-01T00:00:00+00:00"

    def test_second_cycle_chains_nothing(self, services) -> None:
        services.sync.run_cycle()
        height = services.chain.block_height

        [drugs, _] = services.sync.run_cycle()

        assert drugs.records_chained == 0
        assert services.chain.block_height == height

    def test_row_without_key_is_skipped(self, services, store) -> None:
        store.insert("shipments", {"status": "created", "blockchain_tx_id": None})

        [_, shipments] = services.sync.run_cycle()

        assert shipments.status == "success"
        assert shipments.records_chained == 0


@pytest.mark.unit
class TestErrors:
    def test_failing_table_does_not_stop_others(self, services, store, monkeypatch) -> None:
        original = store.select

        def _select(table, projection="*", filters=None):
            if table == "shipments":
                raise StoreError("shipments offline")
            return original(table, projection, filters)

        monkeypatch.setattr(store, "select", _select)

        [drugs, shipments] = services.sync.run_cycle()

        assert drugs.status == "success"
        assert shipments.status == "error"
        assert "shipments offline" in shipments.error
        status = services.sync.status()
        assert status["tables"]["drugs"] is not None
        assert status["tables"]["shipments"] is None

    def test_force_sync_unknown_table(self, services) -> None:
        with pytest.raises(ValidationError):
            services.sync.force_sync("batches")

    def test_force_sync_single_table(self, services) -> None:
        [status] = services.sync.force_sync("drugs")

        assert status.table == "drugs"
        assert status.records_chained == 2

    def test_busy_table_is_skipped(self, services) -> None:
        lock = services.sync._table_locks.get("drugs")
        held = threading.Event()
        release = threading.Event()

        def _hold() -> None:
            with lock:
                held.set()
                release.wait(5)

        holder = threading.Thread(target=_hold)
        holder.start()
        held.wait(5)
        try:
            [status] = services.sync.force_sync("drugs")
        finally:
            release.set()
            holder.join()

        assert status.status == "skipped"
        assert services.chain.block_height == 0


@pytest.mark.unit
class TestLogAndStatus:
    def test_every_outcome_is_logged(self, services) -> None:
        services.sync.run_cycle()
        services.sync.force_sync("drugs")

        log = services.sync.history()

        assert [entry["table"] for entry in log] == ["drugs", "shipments", "drugs"]
        assert log[0]["records_chained"] == 2
        assert services.sync.history(limit=1) == log[-1:]

    def test_status_shape(self, services) -> None:
        status = services.sync.status()

        assert status["is_running"] is False
        assert status["last_sync"] is None
        assert status["sync_interval"] == 60.0
        assert set(status["tables"]) == {"drugs", "shipments"}

    def test_record_activity(self, services) -> None:
        services.sync.record_activity("shipments", "2025-02-02T00:00:00+00:00")

        assert services.sync.status()["tables"]["shipments"] == "2025-02-02T00:00:00+00:00"


@pytest.mark.slow
class TestLifecycle:
    def test_start_runs_first_cycle_immediately(self, services) -> None:
        services.sync.start()
        try:
            deadline = time.monotonic() + 5
            while services.sync.status()["last_sync"] is None and time.monotonic() < deadline:
                time.sleep(0.02)
            assert services.sync.status()["is_running"] is True
        finally:
            services.sync.stop(timeout=5)

        assert services.sync.status()["last_sync"] is not None
        assert services.chain.block_height == 2

    def test_double_start_and_stop_rejected(self, services) -> None:
        services.sync.start()
        try:
            with pytest.raises(ConflictError):
                services.sync.start()
        finally:
            services.sync.stop(timeout=5)

        with pytest.raises(ConflictError):
            services.sync.stop()
