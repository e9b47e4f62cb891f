"""Typed exceptions shared by the chain, ledgers, store and sync packages.

The hierarchy mirrors the error taxonomy the service routes on:

- :class:`ValidationError`  - malformed input; rejected immediately, never
  retried.
- :class:`NotFoundError`    - unknown drug, shipment, ledger or transaction.
- :class:`ConflictError`    - duplicate ids and illegal state transitions.
- :class:`StoreError`       - external store failure; treated as transient.
- :class:`LedgerWriteError` - local filesystem failure; treated as transient.
- :class:`QueueFullError`   - webhook queue at capacity (backpressure).

Verification mismatches are **not** errors; they are reported as ``False``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class OperationContext:
    """Structured operation metadata carried by ledger exceptions.

    Attributes:
        operation: Stable operation identifier (for example
            ``"manager.create_drug"``).
        details: Optional human-readable context for logs and debugging.
    """

    operation: str
    details: str | None = None


class LedgerError(RuntimeError):
    """Base exception for all service failures.

    Args:
        message: Human-readable description.
        context: Optional structured operation metadata.
        cause: Optional underlying exception.
    """

    #: Whether the webhook path may retry the failed event.
    transient: bool = False

    def __init__(
        self,
        message: str,
        *,
        context: OperationContext | None = None,
        cause: Exception | None = None,
    ) -> None:
        if context is not None:
            message = f"{context.operation}: {message}"
            if context.details:
                message = f"{message} ({context.details})"
        super().__init__(message)
        self.context = context
        self.cause = cause


class ValidationError(LedgerError):
    """Missing required field or malformed payload."""


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""


class ConflictError(LedgerError):
    """Entity already exists, or the requested change conflicts with state."""


class InvalidTransitionError(ConflictError):
    """Requested status change is not allowed from the current status.

    Attributes:
        entity: ``"drug"`` or ``"shipment"``.
        current: Status the entity is in.
        requested: Status that was asked for.
    """

    def __init__(self, entity: str, current: str, requested: str) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(f"{entity} cannot move from {current!r} to {requested!r}")


class StoreError(LedgerError):
    """External store request failed."""

    transient = True


class LedgerWriteError(LedgerError):
    """Local ledger, chain or log file could not be written."""

    transient = True


class QueueFullError(LedgerError):
    """Webhook queue is at capacity."""
