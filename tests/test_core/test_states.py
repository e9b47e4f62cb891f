"""Unit tests for the drug and shipment state machines."""

import pytest

from pharma_ledger.core.states import (
    ShipmentStatus,
    can_transition_drug,
    check_drug_transition,
    check_shipment_transition,
    parse_shipment_status,
)
from pharma_ledger.errors import ConflictError, InvalidTransitionError, ValidationError


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,requested,allowed",
    [
        ("created", "in_transit", True),
        ("created", "reverted", True),
        ("created", "delivered", False),
        ("in_transit", "delivered", True),
        ("in_transit", "reverted", True),
        ("in_transit", "in_transit", False),
        ("delivered", "reverted", False),
        ("reverted", "in_transit", False),
        ("unknown", "in_transit", False),
    ],
)
def test_drug_transitions(current, requested, allowed):
    assert can_transition_drug(current, requested) is allowed


@pytest.mark.unit
def test_invalid_drug_transition_is_a_conflict():
    with pytest.raises(InvalidTransitionError) as excinfo:
        check_drug_transition("delivered", "reverted")

    assert isinstance(excinfo.value, ConflictError)
    assert excinfo.value.entity == "drug"
    assert "'delivered'" in str(excinfo.value)


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,requested",
    [
        ("created", "in_transit"),
        ("created", "delivered"),
        ("created", "failed"),
        ("in_transit", "in_transit"),
        ("in_transit", "delivered"),
    ],
)
def test_allowed_shipment_transitions(current, requested):
    check_shipment_transition(current, requested)


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,requested",
    [("delivered", "in_transit"), ("failed", "delivered"), ("created", "created")],
)
def test_rejected_shipment_transitions(current, requested):
    with pytest.raises(InvalidTransitionError):
        check_shipment_transition(current, requested)


@pytest.mark.unit
def test_parse_shipment_status_normalises_case():
    assert parse_shipment_status(" Delivered ") is ShipmentStatus.DELIVERED


@pytest.mark.unit
def test_parse_shipment_status_rejects_unknown():
    with pytest.raises(ValidationError, match="expected one of"):
        parse_shipment_status("lost")
