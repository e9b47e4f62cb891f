"""Drug and shipment state machines.

Drug::

    created ──> in_transit ──> delivered
       │            │
       └────────────┴──> reverted

Shipment::

    created ──> in_transit ──> delivered
       │            │  ↺
       └────────────┴──> failed

``in_transit -> in_transit`` is allowed for shipments so that location
updates can be recorded while a shipment is moving.  ``delivered``,
``reverted`` and ``failed`` are terminal.
"""

from __future__ import annotations

from enum import StrEnum

from pharma_ledger.errors import InvalidTransitionError, ValidationError


class DrugStatus(StrEnum):
    CREATED = "created"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    REVERTED = "reverted"


class ShipmentStatus(StrEnum):
    CREATED = "created"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"


DRUG_TRANSITIONS: dict[DrugStatus, frozenset[DrugStatus]] = {
    DrugStatus.CREATED: frozenset({DrugStatus.IN_TRANSIT, DrugStatus.REVERTED}),
    DrugStatus.IN_TRANSIT: frozenset({DrugStatus.DELIVERED, DrugStatus.REVERTED}),
    DrugStatus.DELIVERED: frozenset(),
    DrugStatus.REVERTED: frozenset(),
}

SHIPMENT_TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    ShipmentStatus.CREATED: frozenset(
        {ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED, ShipmentStatus.FAILED}
    ),
    ShipmentStatus.IN_TRANSIT: frozenset(
        {ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED, ShipmentStatus.FAILED}
    ),
    ShipmentStatus.DELIVERED: frozenset(),
    ShipmentStatus.FAILED: frozenset(),
}


def parse_shipment_status(value: str) -> ShipmentStatus:
    """Map a request string onto :class:`ShipmentStatus`.

    Raises:
        ValidationError: ``value`` is not one of the enumerated statuses.
    """
    try:
        return ShipmentStatus(value.strip().lower())
    except (ValueError, AttributeError) as exc:
        allowed = ", ".join(s.value for s in ShipmentStatus)
        raise ValidationError(f"unknown shipment status {value!r} (expected one of: {allowed})") from exc


def can_transition_drug(current: str, requested: str) -> bool:
    try:
        return DrugStatus(requested) in DRUG_TRANSITIONS[DrugStatus(current)]
    except ValueError:
        return False


def check_drug_transition(current: str, requested: str) -> None:
    """Raise :class:`InvalidTransitionError` unless the drug move is allowed."""
    if not can_transition_drug(current, requested):
        raise InvalidTransitionError("drug", current, requested)


def check_shipment_transition(current: str, requested: str) -> None:
    """Raise :class:`InvalidTransitionError` unless the shipment move is allowed."""
    try:
        allowed = ShipmentStatus(requested) in SHIPMENT_TRANSITIONS[ShipmentStatus(current)]
    except ValueError:
        allowed = False
    if not allowed:
        raise InvalidTransitionError("shipment", current, requested)
