"""Ledger Manager: business operations across chain, ledgers and store.

Every operation follows the same shape:

1. Validate input and the requested state transition against the common
   ledger.  Nothing is written if this fails.
2. Build the full plan: the chain transactions (cascades linked to the
   primary transaction through ``previous_hash``), the manufacturer ledger
   changes, the common ledger changes and the store writes.
3. Open an outbox intent holding that plan.
4. Apply the steps strictly in order (chain, manufacturer ledger, common
   ledger, store) marking each one in the outbox, then close the intent.

A failure in step 4 propagates to the caller and leaves the intent open.
:meth:`LedgerManager.consistency_check` reports open intents and
:meth:`LedgerManager.reconcile` replays them.  Every step is idempotent on
replay:

- chain: a transaction already on the chain is not appended again
- ledgers: an add whose record already exists with the same ``created_at``,
  or a status change equal to the record's last history entry, is skipped
- store: inserts become updates when the row exists; status-update rows
  are appended only if no row carries the same transaction id

Operations touching the same drug or shipment are serialised with
per-entity locks.  While an intent for a drug or shipment is open, new
operations on that entity raise :class:`ConflictError` until it is
reconciled.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pharma_ledger.chain.ledger import ChainLedger
from pharma_ledger.chain.transactions import (
    DrugCreate,
    DrugRevert,
    DrugUpdate,
    ShipmentCreate,
    ShipmentUpdate,
    Transaction,
    create_transaction,
    set_previous_hash,
    validate,
)
from pharma_ledger.core.outbox import Intent, Outbox
from pharma_ledger.core.params import (
    CreateDrugParams,
    CreateShipmentParams,
    OperationResult,
    RevertDrugParams,
    UpdateShipmentStatusParams,
)
from pharma_ledger.core.states import (
    DrugStatus,
    ShipmentStatus,
    can_transition_drug,
    check_drug_transition,
    check_shipment_transition,
    parse_shipment_status,
)
from pharma_ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    OperationContext,
)
from pharma_ledger.ledgers.models import CommonLedger, ManufacturerLedger, Status
from pharma_ledger.ledgers.storage import LedgerStorage
from pharma_ledger.locks import KeyedLocks
from pharma_ledger.storage.files import sha256_hex
from pharma_ledger.store.base import Row, StoreClient, id_column, is_unchained
from pharma_ledger.timeutil import now_iso

logger = logging.getLogger(__name__)


def compute_verification_hash(drug_id: str, manufacturer_id: str, timestamp: str) -> str:
    """SHA-256 binding a drug's identity, manufacturer and creation time."""
    return sha256_hex(f"{drug_id}:{manufacturer_id}:{timestamp}")


class LedgerManager:
    """Orchestrates drug and shipment operations.

    Args:
        chain: Hash-chain ledger.
        ledgers: Manufacturer/common ledger storage.
        store: External store client.
        outbox: Intent log for partially applied operations.
    """

    def __init__(
        self,
        chain: ChainLedger,
        ledgers: LedgerStorage,
        store: StoreClient,
        outbox: Outbox,
    ) -> None:
        self.chain = chain
        self.ledgers = ledgers
        self.store = store
        self.outbox = outbox
        self._entity_locks = KeyedLocks()

    # ==========================================================================
    # OPERATIONS
    # ==========================================================================

    def create_drug(self, params: CreateDrugParams) -> OperationResult:
        """Register a new drug and return its verification hash."""
        drug_id, manufacturer_id = params.drug_id, params.manufacturer_id
        self.ledgers.manufacturer_path(manufacturer_id)

        with self._entity_locks.hold(("drug", drug_id)):
            self._refuse_if_unfinished("manager.create_drug", ("drug", drug_id))
            if self.ledgers.load_common().find_drug(drug_id) is not None:
                raise ConflictError(
                    f"drug {drug_id} already exists",
                    context=OperationContext("manager.create_drug"),
                )

            timestamp = now_iso()
            verification_hash = compute_verification_hash(drug_id, manufacturer_id, timestamp)
            tx = create_transaction(
                DrugCreate(
                    drug_id=drug_id,
                    manufacturer_id=manufacturer_id,
                    name=params.name,
                    description=params.description,
                    verification_hash=verification_hash,
                    created_at=timestamp,
                ),
                timestamp=timestamp,
            )

            add = {
                "op": "add_drug",
                "drug_id": drug_id,
                "status": DrugStatus.CREATED.value,
                "timestamp": timestamp,
                "details": "Drug created",
            }
            steps = [
                _chain_step(tx),
                _manufacturer_step(manufacturer_id, [add]),
                _common_step(
                    [{**add, "manufacturer_id": manufacturer_id, "verification_hash": verification_hash}]
                ),
                _store_step(
                    [
                        _insert(
                            "drugs",
                            drug_id,
                            {
                                "drug_id": drug_id,
                                "manufacturer_id": manufacturer_id,
                                "name": params.name,
                                "description": params.description,
                                "status": DrugStatus.CREATED.value,
                                "verification_hash": verification_hash,
                                "blockchain_tx_id": tx.hash,
                                "created_at": timestamp,
                                "updated_at": timestamp,
                            },
                        ),
                        _status_row(
                            "drug_status_updates",
                            "drug_id",
                            drug_id,
                            DrugStatus.CREATED.value,
                            params.location,
                            params.user_id,
                            tx.hash,
                            timestamp,
                        ),
                    ]
                ),
            ]
            intent = self.outbox.open("create_drug", params.to_dict(), steps)
            self._execute(intent)

        logger.info("Created drug %s for manufacturer %s (tx %s)", drug_id, manufacturer_id, tx.hash[:12])
        return OperationResult(
            op_id=intent.op_id,
            kind=intent.kind,
            tx_hashes=[tx.hash],
            verification_hash=verification_hash,
        )

    def create_shipment(self, params: CreateShipmentParams) -> OperationResult:
        """Create a shipment and move its drug to ``in_transit``."""
        shipment_id, drug_id = params.shipment_id, params.drug_id
        manufacturer_id = params.manufacturer_id

        with self._entity_locks.hold(("shipment", shipment_id), ("drug", drug_id)):
            self._refuse_if_unfinished(
                "manager.create_shipment", ("shipment", shipment_id), ("drug", drug_id)
            )
            drug = self.ledgers.load_manufacturer(manufacturer_id).find_drug(drug_id)
            if drug is None:
                raise NotFoundError(
                    f"drug {drug_id} not found for manufacturer {manufacturer_id}",
                    context=OperationContext("manager.create_shipment"),
                )
            if self.ledgers.load_common().find_shipment(shipment_id) is not None:
                raise ConflictError(
                    f"shipment {shipment_id} already exists",
                    context=OperationContext("manager.create_shipment"),
                )
            check_drug_transition(drug.status, DrugStatus.IN_TRANSIT.value)

            timestamp = now_iso()
            tx = create_transaction(
                ShipmentCreate(
                    shipment_id=shipment_id,
                    drug_id=drug_id,
                    manufacturer_id=manufacturer_id,
                    distributor_id=params.distributor_id,
                    created_at=timestamp,
                ),
                timestamp=timestamp,
            )
            cascade = set_previous_hash(
                create_transaction(
                    DrugUpdate(
                        drug_id=drug_id,
                        status=DrugStatus.IN_TRANSIT.value,
                        updated_at=timestamp,
                        updated_by=params.user_id,
                    ),
                    timestamp=timestamp,
                ),
                tx.hash,
            )

            add = {
                "op": "add_shipment",
                "shipment_id": shipment_id,
                "drug_id": drug_id,
                "status": ShipmentStatus.CREATED.value,
                "timestamp": timestamp,
                "details": "Shipment created",
            }
            drug_change = _drug_status(
                drug_id, DrugStatus.IN_TRANSIT, timestamp, f"Drug added to shipment {shipment_id}"
            )
            steps = [
                _chain_step(tx),
                _chain_step(cascade),
                _manufacturer_step(manufacturer_id, [add, drug_change]),
                _common_step(
                    [
                        {
                            **add,
                            "manufacturer_id": manufacturer_id,
                            "distributor_id": params.distributor_id,
                        },
                        drug_change,
                    ]
                ),
                _store_step(
                    [
                        _insert(
                            "shipments",
                            shipment_id,
                            {
                                "shipment_id": shipment_id,
                                "drug_id": drug_id,
                                "manufacturer_id": manufacturer_id,
                                "distributor_id": params.distributor_id,
                                "status": ShipmentStatus.CREATED.value,
                                "blockchain_tx_id": tx.hash,
                                "created_at": timestamp,
                                "updated_at": timestamp,
                            },
                        ),
                        _status_row(
                            "shipment_status_updates",
                            "shipment_id",
                            shipment_id,
                            ShipmentStatus.CREATED.value,
                            params.location,
                            params.user_id,
                            tx.hash,
                            timestamp,
                        ),
                        *_drug_store_writes(
                            drug_id,
                            DrugStatus.IN_TRANSIT,
                            cascade.hash,
                            timestamp,
                            params.location,
                            params.user_id,
                        ),
                    ]
                ),
            ]
            intent = self.outbox.open("create_shipment", params.to_dict(), steps)
            self._execute(intent)

        logger.info("Created shipment %s for drug %s (tx %s)", shipment_id, drug_id, tx.hash[:12])
        return OperationResult(op_id=intent.op_id, kind=intent.kind, tx_hashes=[tx.hash, cascade.hash])

    def update_shipment_status(self, params: UpdateShipmentStatusParams) -> OperationResult:
        """Move a shipment to a new status; ``delivered`` cascades to its drug."""
        status = parse_shipment_status(params.status)
        shipment_id = params.shipment_id
        drug_id = self.ledgers.load_common().get_shipment(shipment_id).drug_id

        with self._entity_locks.hold(("shipment", shipment_id), ("drug", drug_id)):
            self._refuse_if_unfinished(
                "manager.update_shipment_status", ("shipment", shipment_id), ("drug", drug_id)
            )
            common = self.ledgers.load_common()
            shipment = common.get_shipment(shipment_id)
            check_shipment_transition(shipment.status, status.value)
            manufacturer_id = shipment.manufacturer_id

            timestamp = now_iso()
            tx = create_transaction(
                ShipmentUpdate(
                    shipment_id=shipment_id,
                    status=status.value,
                    updated_at=timestamp,
                    updated_by=params.user_id,
                ),
                timestamp=timestamp,
            )
            shipment_change = {
                "op": "shipment_status",
                "shipment_id": shipment_id,
                "status": status.value,
                "timestamp": timestamp,
                "details": f"Shipment status updated to {status.value}",
            }
            ledger_changes: list[dict[str, Any]] = [shipment_change]
            store_writes = [
                _update(
                    "shipments",
                    shipment_id,
                    {"status": status.value, "blockchain_tx_id": tx.hash, "updated_at": timestamp},
                ),
                _status_row(
                    "shipment_status_updates",
                    "shipment_id",
                    shipment_id,
                    status.value,
                    params.location,
                    params.user_id,
                    tx.hash,
                    timestamp,
                ),
            ]
            chain_steps = [_chain_step(tx)]
            tx_hashes = [tx.hash]

            cascade = self._delivery_cascade(common, shipment_id, drug_id, status, tx, params.user_id)
            if cascade is not None:
                chain_steps.append(_chain_step(cascade))
                tx_hashes.append(cascade.hash)
                ledger_changes.append(
                    _drug_status(
                        drug_id, DrugStatus.DELIVERED, timestamp, f"Drug delivered via shipment {shipment_id}"
                    )
                )
                store_writes.extend(
                    _drug_store_writes(
                        drug_id,
                        DrugStatus.DELIVERED,
                        cascade.hash,
                        timestamp,
                        params.location,
                        params.user_id,
                    )
                )

            steps = [
                *chain_steps,
                _manufacturer_step(manufacturer_id, ledger_changes),
                _common_step(ledger_changes),
                _store_step(store_writes),
            ]
            intent = self.outbox.open(
                "update_shipment_status",
                {**params.to_dict(), "drug_id": drug_id, "manufacturer_id": manufacturer_id},
                steps,
            )
            self._execute(intent)

        logger.info("Shipment %s -> %s (tx %s)", shipment_id, status.value, tx.hash[:12])
        return OperationResult(op_id=intent.op_id, kind=intent.kind, tx_hashes=tx_hashes)

    def revert_drug(self, params: RevertDrugParams) -> OperationResult:
        """Move a drug to the terminal ``reverted`` state."""
        drug_id = params.drug_id

        with self._entity_locks.hold(("drug", drug_id)):
            self._refuse_if_unfinished("manager.revert_drug", ("drug", drug_id))
            drug = self.ledgers.load_common().get_drug(drug_id)
            check_drug_transition(drug.status, DrugStatus.REVERTED.value)
            manufacturer_id = drug.manufacturer_id

            timestamp = now_iso()
            tx = create_transaction(
                DrugRevert(
                    drug_id=drug_id,
                    reason=params.reason,
                    updated_at=timestamp,
                    updated_by=params.user_id,
                ),
                timestamp=timestamp,
            )
            change = {
                "op": "revert_drug",
                "drug_id": drug_id,
                "reason": params.reason,
                "timestamp": timestamp,
            }
            steps = [
                _chain_step(tx),
                _manufacturer_step(manufacturer_id, [change]),
                _common_step([change]),
                _store_step(
                    [
                        _update(
                            "drugs",
                            drug_id,
                            {
                                "status": DrugStatus.REVERTED.value,
                                "reverted_at": timestamp,
                                "blockchain_tx_id": tx.hash,
                                "updated_at": timestamp,
                            },
                        ),
                        _status_row(
                            "drug_status_updates",
                            "drug_id",
                            drug_id,
                            DrugStatus.REVERTED.value,
                            "",
                            params.user_id,
                            tx.hash,
                            timestamp,
                        ),
                    ]
                ),
            ]
            intent = self.outbox.open(
                "revert_drug", {**params.to_dict(), "manufacturer_id": manufacturer_id}, steps
            )
            self._execute(intent)

        logger.info("Reverted drug %s: %s (tx %s)", drug_id, params.reason, tx.hash[:12])
        return OperationResult(op_id=intent.op_id, kind=intent.kind, tx_hashes=[tx.hash])

    def verify_drug(self, drug_id: str) -> bool:
        """Check a drug's verification hash and its latest chain transaction.

        Returns ``False`` on any mismatch.

        Raises:
            NotFoundError: The drug is absent from the common ledger or the
                store.
        """
        ledger_record = self.ledgers.load_common().get_drug(drug_id)
        rows = self.store.select("drugs", "*", {"drug_id": drug_id})
        if not rows:
            raise NotFoundError(
                f"drug {drug_id} not found in store",
                context=OperationContext("manager.verify_drug"),
            )
        row = rows[0]

        if row.get("verification_hash") != ledger_record.verification_hash:
            logger.warning("Drug %s: verification hash mismatch between store and ledger", drug_id)
            return False

        tx_id = row.get("blockchain_tx_id")
        if is_unchained(tx_id):
            logger.warning("Drug %s has no chain transaction yet", drug_id)
            return False
        if not self.chain.contains(tx_id):
            logger.warning("Drug %s: transaction %s is not on the chain", drug_id, tx_id)
            return False
        return validate(tx_id, self.chain.get_block(tx_id).tx_data)

    # ==========================================================================
    # QUERIES
    # ==========================================================================

    def get_drug(self, drug_id: str) -> dict[str, Any]:
        return self.ledgers.load_common().get_drug(drug_id).to_dict()

    def list_drugs(self, manufacturer_id: str | None = None) -> list[dict[str, Any]]:
        drugs = self.ledgers.load_common().drugs
        if manufacturer_id:
            drugs = [d for d in drugs if d.manufacturer_id == manufacturer_id]
        return [d.to_dict() for d in drugs]

    def get_shipment(self, shipment_id: str) -> dict[str, Any]:
        return self.ledgers.load_common().get_shipment(shipment_id).to_dict()

    def list_shipments(
        self, manufacturer_id: str | None = None, distributor_id: str | None = None
    ) -> list[dict[str, Any]]:
        shipments = self.ledgers.load_common().shipments
        if manufacturer_id:
            shipments = [s for s in shipments if s.manufacturer_id == manufacturer_id]
        if distributor_id:
            shipments = [s for s in shipments if s.distributor_id == distributor_id]
        return [s.to_dict() for s in shipments]

    def get_drug_history(self, drug_id: str) -> list[Status]:
        return self.ledgers.load_common().get_drug_history(drug_id)

    def get_shipment_history(self, shipment_id: str) -> list[Status]:
        return self.ledgers.load_common().get_shipment_history(shipment_id)

    def get_drug_status_updates(self, drug_id: str) -> list[Row]:
        return self.store.select("drug_status_updates", "*", {"drug_id": drug_id})

    def get_shipment_status_updates(self, shipment_id: str) -> list[Row]:
        return self.store.select("shipment_status_updates", "*", {"shipment_id": shipment_id})

    def get_manufacturer_ledger(self, manufacturer_id: str) -> ManufacturerLedger:
        if not self.ledgers.manufacturer_exists(manufacturer_id):
            raise NotFoundError(
                f"no ledger for manufacturer {manufacturer_id}",
                context=OperationContext("manager.get_manufacturer_ledger"),
            )
        return self.ledgers.load_manufacturer(manufacturer_id)

    # ==========================================================================
    # CONSISTENCY
    # ==========================================================================

    def consistency_check(self) -> dict[str, Any]:
        """Report chain breaks, open intents and ledger divergence.

        Nothing is repaired here; the report carries a recommendation.
        """
        chain_report = self.chain.consistency_check()
        pending = self.outbox.pending()
        mismatches = self._ledger_mismatches()

        status = chain_report["status"]
        if status == "consistent" and (pending or mismatches):
            status = "inconsistent"

        recommendation = None
        if chain_report["status"] != "consistent":
            recommendation = "chain ledger is damaged; restore it from backup before further writes"
        elif pending:
            recommendation = f"run reconcile to replay {len(pending)} unfinished operation(s)"
        elif mismatches:
            recommendation = "manufacturer and common ledgers disagree; inspect the listed records"

        return {
            "status": status,
            "chain": chain_report,
            "open_intents": [intent.to_dict() for intent in pending],
            "ledger_mismatches": mismatches,
            "recommendation": recommendation,
        }

    def reconcile(self) -> dict[str, Any]:
        """Replay every open outbox intent.

        Intents that fail again stay open and are listed under ``failed``.
        """
        replayed: list[str] = []
        failed: list[dict[str, str]] = []
        for intent in self.outbox.pending():
            keys = _intent_lock_keys(intent)
            try:
                with self._entity_locks.hold(*keys):
                    self._execute(intent)
            except LedgerError as exc:
                failed.append({"op_id": intent.op_id, "kind": intent.kind, "error": str(exc)})
                continue
            replayed.append(intent.op_id)
            logger.info("Replayed %s operation %s", intent.kind, intent.op_id)
        return {"replayed": replayed, "failed": failed}

    def _ledger_mismatches(self) -> list[str]:
        common = self.ledgers.load_common()
        manufacturer_ledgers: dict[str, ManufacturerLedger] = {}
        problems: list[str] = []

        def ledger_for(manufacturer_id: str) -> ManufacturerLedger:
            if manufacturer_id not in manufacturer_ledgers:
                manufacturer_ledgers[manufacturer_id] = self.ledgers.load_manufacturer(manufacturer_id)
            return manufacturer_ledgers[manufacturer_id]

        for drug in common.drugs:
            local = ledger_for(drug.manufacturer_id).find_drug(drug.drug_id)
            if local is None:
                problems.append(f"drug {drug.drug_id} missing from manufacturer {drug.manufacturer_id}")
            elif local.status != drug.status:
                problems.append(
                    f"drug {drug.drug_id} is {local.status!r} in manufacturer ledger, "
                    f"{drug.status!r} in common ledger"
                )
        for shipment in common.shipments:
            local = ledger_for(shipment.manufacturer_id).find_shipment(shipment.shipment_id)
            if local is None:
                problems.append(
                    f"shipment {shipment.shipment_id} missing from manufacturer {shipment.manufacturer_id}"
                )
            elif local.status != shipment.status:
                problems.append(
                    f"shipment {shipment.shipment_id} is {local.status!r} in manufacturer ledger, "
                    f"{shipment.status!r} in common ledger"
                )
        return problems

    # ==========================================================================
    # STEP EXECUTION
    # ==========================================================================

    def _refuse_if_unfinished(self, operation: str, *keys: tuple[str, str]) -> None:
        """Reject new work on an entity that still has an open intent.

        Raises:
            ConflictError: Some open intent touches one of ``keys``.
        """
        wanted = set(keys)
        for intent in self.outbox.pending():
            overlap = wanted.intersection(_intent_lock_keys(intent))
            if overlap:
                entity, entity_id = sorted(overlap)[0]
                raise ConflictError(
                    f"{entity} {entity_id} has an unfinished {intent.kind} operation; run reconcile first",
                    context=OperationContext(operation, intent.op_id),
                )

    def _execute(self, intent: Intent) -> None:
        for index, step in enumerate(intent.steps):
            if index in intent.completed:
                continue
            try:
                self._apply_step(step)
            except Exception:
                logger.exception(
                    "%s %s stopped at step %d (%s); left open for reconcile",
                    intent.kind,
                    intent.op_id,
                    index,
                    step.get("step"),
                )
                raise
            self.outbox.mark(intent, index)
        self.outbox.close(intent)

    def _apply_step(self, step: dict[str, Any]) -> None:
        kind = step["step"]
        if kind == "chain":
            tx = Transaction.from_dict(step["tx"])
            if tx.hash != step["tx"].get("hash"):
                raise LedgerError(
                    "stored transaction does not match its hash",
                    context=OperationContext("manager.apply_chain", step["tx"].get("hash")),
                )
            if not self.chain.contains(tx.hash):
                self.chain.append_transaction(tx)
        elif kind == "manufacturer_ledger":
            self.ledgers.update_manufacturer(
                step["manufacturer_id"], lambda ledger: _apply_changes(ledger, step["changes"])
            )
        elif kind == "common_ledger":
            self.ledgers.update_common(lambda ledger: _apply_changes(ledger, step["changes"]))
        elif kind == "store":
            for write in step["writes"]:
                self._apply_store_write(write)
        else:
            raise LedgerError(f"unknown step {kind!r}", context=OperationContext("manager.apply_step"))

    def _apply_store_write(self, write: dict[str, Any]) -> None:
        table = write["table"]
        op = write["op"]
        if op == "insert":
            key = write["key"]
            if self.store.select(table, id_column(table), {id_column(table): key}):
                self.store.update(table, key, write["row"])
            else:
                self.store.insert(table, write["row"])
        elif op == "update":
            if not self.store.update(table, write["key"], write["patch"]):
                logger.warning("Store %s has no row %s to update", table, write["key"])
        elif op == "append":
            if not self.store.select(table, "*", write["match"]):
                self.store.insert(table, write["row"])
        else:
            raise LedgerError(f"unknown store write {op!r}", context=OperationContext("manager.apply_store"))

    def _delivery_cascade(
        self,
        common: CommonLedger,
        shipment_id: str,
        drug_id: str,
        status: ShipmentStatus,
        tx: Transaction,
        user_id: str,
    ) -> Transaction | None:
        if status is not ShipmentStatus.DELIVERED:
            return None
        drug = common.find_drug(drug_id)
        if drug is None:
            logger.warning("Shipment %s delivered but drug %s is not in the common ledger", shipment_id, drug_id)
            return None
        if not can_transition_drug(drug.status, DrugStatus.DELIVERED.value):
            logger.warning(
                "Shipment %s delivered but drug %s is %r; drug status left unchanged",
                shipment_id,
                drug_id,
                drug.status,
            )
            return None
        cascade = create_transaction(
            DrugUpdate(
                drug_id=drug_id,
                status=DrugStatus.DELIVERED.value,
                updated_at=tx.timestamp,
                updated_by=user_id,
            ),
            timestamp=tx.timestamp,
        )
        return set_previous_hash(cascade, tx.hash)


# =============================================================================
# PLAN BUILDERS
# =============================================================================


def _chain_step(tx: Transaction) -> dict[str, Any]:
    return {"step": "chain", "tx": tx.to_dict()}


def _manufacturer_step(manufacturer_id: str, changes: list[dict[str, Any]]) -> dict[str, Any]:
    return {"step": "manufacturer_ledger", "manufacturer_id": manufacturer_id, "changes": changes}


def _common_step(changes: list[dict[str, Any]]) -> dict[str, Any]:
    return {"step": "common_ledger", "changes": changes}


def _store_step(writes: list[dict[str, Any]]) -> dict[str, Any]:
    return {"step": "store", "writes": writes}


def _drug_status(drug_id: str, status: DrugStatus, timestamp: str, details: str) -> dict[str, Any]:
    return {
        "op": "drug_status",
        "drug_id": drug_id,
        "status": status.value,
        "timestamp": timestamp,
        "details": details,
    }


def _insert(table: str, key: str, row: dict[str, Any]) -> dict[str, Any]:
    return {"op": "insert", "table": table, "key": key, "row": row}


def _update(table: str, key: str, patch: dict[str, Any]) -> dict[str, Any]:
    return {"op": "update", "table": table, "key": key, "patch": patch}


def _status_row(
    table: str,
    id_field: str,
    entity_id: str,
    status: str,
    location: str,
    updated_by: str,
    tx_hash: str,
    timestamp: str,
) -> dict[str, Any]:
    return {
        "op": "append",
        "table": table,
        "match": {id_field: entity_id, "blockchain_tx_id": tx_hash},
        "row": {
            id_field: entity_id,
            "status": status,
            "location": location,
            "updated_by": updated_by,
            "blockchain_tx_id": tx_hash,
            "timestamp": timestamp,
        },
    }


def _drug_store_writes(
    drug_id: str,
    status: DrugStatus,
    tx_hash: str,
    timestamp: str,
    location: str,
    updated_by: str,
) -> list[dict[str, Any]]:
    return [
        _update(
            "drugs",
            drug_id,
            {"status": status.value, "blockchain_tx_id": tx_hash, "updated_at": timestamp},
        ),
        _status_row(
            "drug_status_updates", "drug_id", drug_id, status.value, location, updated_by, tx_hash, timestamp
        ),
    ]


def _intent_lock_keys(intent: Intent) -> list[tuple[str, str]]:
    keys = []
    if intent.params.get("drug_id"):
        keys.append(("drug", intent.params["drug_id"]))
    if intent.params.get("shipment_id"):
        keys.append(("shipment", intent.params["shipment_id"]))
    return keys


# =============================================================================
# LEDGER CHANGE APPLICATION
# =============================================================================


def _apply_changes(ledger: ManufacturerLedger | CommonLedger, changes: Iterable[dict[str, Any]]) -> None:
    for change in changes:
        _apply_change(ledger, change)


def _apply_change(ledger: ManufacturerLedger | CommonLedger, change: dict[str, Any]) -> None:
    op = change["op"]
    timestamp = change["timestamp"]
    extra = {
        key: change[key]
        for key in ("manufacturer_id", "verification_hash", "distributor_id")
        if key in change
    }

    if op == "add_drug":
        existing = ledger.find_drug(change["drug_id"])
        if existing is not None and existing.created_at == timestamp:
            return
        ledger.add_drug(
            change["drug_id"], change["status"], timestamp=timestamp, details=change["details"], **extra
        )
    elif op == "add_shipment":
        existing = ledger.find_shipment(change["shipment_id"])
        if existing is not None and existing.created_at == timestamp:
            return
        ledger.add_shipment(
            change["shipment_id"],
            change["drug_id"],
            change["status"],
            timestamp=timestamp,
            details=change["details"],
            **extra,
        )
    elif op == "drug_status":
        record = ledger.get_drug(change["drug_id"])
        if _last_entry_is(record.history, change["status"], timestamp, change["details"]):
            return
        ledger.update_drug_status(change["drug_id"], change["status"], change["details"], timestamp=timestamp)
    elif op == "revert_drug":
        record = ledger.get_drug(change["drug_id"])
        details = f"Drug reverted: {change['reason']}"
        if _last_entry_is(record.history, DrugStatus.REVERTED.value, timestamp, details):
            return
        ledger.revert_drug(change["drug_id"], change["reason"], timestamp=timestamp)
    elif op == "shipment_status":
        record = ledger.get_shipment(change["shipment_id"])
        if _last_entry_is(record.history, change["status"], timestamp, change["details"]):
            return
        ledger.update_shipment_status(
            change["shipment_id"], change["status"], change["details"], timestamp=timestamp
        )
    else:
        raise LedgerError(f"unknown ledger change {op!r}", context=OperationContext("manager.apply_change"))


def _last_entry_is(history: list[Status], status: str, timestamp: str, details: str | None) -> bool:
    return bool(history) and history[-1] == Status(status, timestamp, details or None)
