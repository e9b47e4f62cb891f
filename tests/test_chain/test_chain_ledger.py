"""Tests for the append-only chain ledger.

Test organisation
-----------------
- :class:`TestAppend`       - heights, linking, duplicates and persistence.
- :class:`TestLookup`       - block retrieval and transaction verification.
- :class:`TestConsistency`  - consistency reports for intact and damaged files.
- :class:`TestConcurrency`  - parallel appends keep heights gap-free.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from pharma_ledger.chain import ledger as ledger_module
from pharma_ledger.chain.ledger import Block, ChainLedger, check_blocks
from pharma_ledger.chain.transactions import DrugUpdate, create_transaction
from pharma_ledger.errors import ConflictError, LedgerError, LedgerWriteError, NotFoundError


def _tx(drug_id: str = "D1", status: str = "in_transit"):
    return create_transaction(DrugUpdate(drug_id=drug_id, status=status, updated_at="t"))


@pytest.fixture
def chain_path(tmp_path: Path) -> Path:
    return tmp_path / "blockchain" / "blockchain_ledger.json"


@pytest.fixture
def chain(chain_path: Path) -> ChainLedger:
    return ChainLedger(chain_path)


@pytest.mark.unit
class TestAppend:
    def test_empty_chain(self, chain: ChainLedger) -> None:
        assert chain.block_height == 0
        assert chain.last_hash() == ""
        assert chain.status()["transaction_count"] == 0

    def test_heights_and_links(self, chain: ChainLedger) -> None:
        first, second = _tx("D1"), _tx("D2")

        assert chain.append_transaction(first) == 1
        assert chain.append_transaction(second) == 2

        blocks = chain.blocks()
        assert blocks[0].previous_block_hash == ""
        assert blocks[1].previous_block_hash == first.hash
        assert chain.last_hash() == second.hash

    def test_block_stores_envelope(self, chain: ChainLedger) -> None:
        tx = _tx()
        chain.append_transaction(tx)

        assert chain.get_block(tx.hash).tx_data == tx.envelope()

    def test_duplicate_hash_rejected(self, chain: ChainLedger) -> None:
        tx = _tx()
        chain.append_transaction(tx)

        with pytest.raises(ConflictError):
            chain.append_transaction(tx)
        assert chain.block_height == 1

    def test_reload_from_disk(self, chain: ChainLedger, chain_path: Path) -> None:
        tx = _tx()
        chain.append_transaction(tx)

        reloaded = ChainLedger(chain_path)

        assert reloaded.block_height == 1
        assert reloaded.contains(tx.hash)
        assert reloaded.status()["last_updated"] == chain.status()["last_updated"]

    def test_failed_write_rolls_back(self, chain: ChainLedger, monkeypatch) -> None:
        kept = _tx("D1")
        chain.append_transaction(kept)

        def _fail(path, document):
            raise LedgerWriteError("disk full")

        monkeypatch.setattr(ledger_module, "atomic_write_json", _fail)
        lost = _tx("D2")

        with pytest.raises(LedgerWriteError):
            chain.append_transaction(lost)

        assert chain.block_height == 1
        assert not chain.contains(lost.hash)
        assert chain.last_hash() == kept.hash

    def test_corrupt_file_refuses_to_load(self, chain_path: Path) -> None:
        chain_path.parent.mkdir(parents=True)
        chain_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(LedgerError):
            ChainLedger(chain_path)


@pytest.mark.unit
class TestLookup:
    def test_unknown_hash(self, chain: ChainLedger) -> None:
        with pytest.raises(NotFoundError):
            chain.get_block("0" * 64)
        with pytest.raises(NotFoundError):
            chain.verify_transaction("0" * 64)

    def test_verify_transaction(self, chain: ChainLedger) -> None:
        tx = _tx()
        chain.append_transaction(tx)

        assert chain.verify_transaction(tx.hash) is True

    def test_verify_detects_tampered_block(self, chain: ChainLedger) -> None:
        tx = _tx()
        tampered = {**tx.envelope(), "data": {**tx.data, "status": "delivered"}}
        chain.append(tampered, tx.hash)

        assert chain.verify_transaction(tx.hash) is False


@pytest.mark.unit
class TestConsistency:
    def _fill(self, chain: ChainLedger, n: int = 3) -> None:
        for i in range(n):
            chain.append_transaction(_tx(f"D{i}"))

    def test_absent_file_is_consistent(self, chain: ChainLedger) -> None:
        assert chain.consistency_check()["status"] == "consistent"

    def test_intact_chain(self, chain: ChainLedger) -> None:
        self._fill(chain)

        report = chain.consistency_check(verify_hashes=True)

        assert report["status"] == "consistent"
        assert report["index"] is None

    def test_broken_link_reports_index(self, chain: ChainLedger, chain_path: Path) -> None:
        self._fill(chain)
        document = json.loads(chain_path.read_text(encoding="utf-8"))
        document["blocks"][2]["previous_block_hash"] = "f" * 64
        chain_path.write_text(json.dumps(document), encoding="utf-8")

        report = chain.consistency_check()

        assert report["status"] == "inconsistent"
        assert report["index"] == 2

    def test_declared_height_mismatch(self, chain: ChainLedger, chain_path: Path) -> None:
        self._fill(chain)
        document = json.loads(chain_path.read_text(encoding="utf-8"))
        document["block_height"] = 7
        chain_path.write_text(json.dumps(document), encoding="utf-8")

        assert chain.consistency_check()["status"] == "inconsistent"

    def test_tampered_payload_found_only_with_hash_verification(
        self, chain: ChainLedger, chain_path: Path
    ) -> None:
        self._fill(chain)
        document = json.loads(chain_path.read_text(encoding="utf-8"))
        document["blocks"][1]["tx_data"]["data"]["status"] = "delivered"
        chain_path.write_text(json.dumps(document), encoding="utf-8")

        assert chain.consistency_check()["status"] == "consistent"
        report = chain.consistency_check(verify_hashes=True)
        assert report["status"] == "inconsistent"
        assert report["index"] == 1

    def test_unreadable_file_is_error(self, chain: ChainLedger, chain_path: Path) -> None:
        self._fill(chain, 1)
        chain_path.write_text("{truncated", encoding="utf-8")

        assert chain.consistency_check()["status"] == "error"

    def test_first_block_height_must_be_one(self) -> None:
        block = Block(block_height=2, tx_hash="a", tx_data={}, timestamp="t")

        assert check_blocks([block])["status"] == "inconsistent"


@pytest.mark.unit
class TestConcurrency:
    def test_parallel_appends_have_unique_contiguous_heights(self, chain: ChainLedger) -> None:
        heights: list[int] = []
        lock = threading.Lock()

        def _append(i: int) -> None:
            height = chain.append_transaction(_tx(f"D{i}"))
            with lock:
                heights.append(height)

        threads = [threading.Thread(target=_append, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(heights) == list(range(1, 21))
        assert chain.consistency_check()["status"] == "consistent"
