"""File-backed persistence for manufacturer ledgers and the common ledger.

Layout::

    <manufacturers_dir>/<manufacturer_id>.json   one file per manufacturer
    <common_path>                                 singleton common ledger

All mutations go through :meth:`LedgerStorage.update_manufacturer` and
:meth:`LedgerStorage.update_common`, which hold the file's lock across
load, mutate and atomic write.  If the mutation raises, nothing is written.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from pharma_ledger.errors import LedgerError, NotFoundError, OperationContext, ValidationError
from pharma_ledger.ledgers.models import CommonLedger, ManufacturerLedger
from pharma_ledger.locks import KeyedLocks
from pharma_ledger.storage.files import atomic_write_json, read_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class LedgerStorage:
    """Load, mutate and persist ledgers with one lock per ledger file."""

    def __init__(self, manufacturers_dir: Path, common_path: Path) -> None:
        self.manufacturers_dir = Path(manufacturers_dir)
        self.common_path = Path(common_path)
        self._locks = KeyedLocks()

    def manufacturer_path(self, manufacturer_id: str) -> Path:
        """Ledger file for ``manufacturer_id``.

        Raises:
            ValidationError: The id is empty or would escape the ledger
                directory.
        """
        if not manufacturer_id or not _SAFE_ID.match(manufacturer_id):
            raise ValidationError(f"invalid manufacturer id {manufacturer_id!r}")
        return self.manufacturers_dir / f"{manufacturer_id}.json"

    # ------------------------------------------------------------------
    # Manufacturer ledgers
    # ------------------------------------------------------------------

    def load_manufacturer(self, manufacturer_id: str) -> ManufacturerLedger:
        """Return the ledger, or a fresh empty one if none exists yet."""
        path = self.manufacturer_path(manufacturer_id)
        with self._locks.hold(path):
            return self._read_manufacturer(manufacturer_id, path)

    def update_manufacturer(
        self, manufacturer_id: str, mutate: Callable[[ManufacturerLedger], T]
    ) -> T:
        """Apply ``mutate`` to the ledger and persist it atomically.

        The ledger is created lazily on the first successful mutation.
        """
        path = self.manufacturer_path(manufacturer_id)
        with self._locks.hold(path):
            ledger = self._read_manufacturer(manufacturer_id, path)
            result = mutate(ledger)
            atomic_write_json(path, ledger.to_dict())
            return result

    def manufacturer_exists(self, manufacturer_id: str) -> bool:
        return self.manufacturer_path(manufacturer_id).exists()

    def list_manufacturers(self) -> list[str]:
        if not self.manufacturers_dir.exists():
            return []
        return sorted(p.stem for p in self.manufacturers_dir.glob("*.json"))

    def delete_manufacturer_ledger(self, manufacturer_id: str) -> None:
        """Remove a manufacturer's ledger file.

        Raises:
            NotFoundError: No ledger exists for ``manufacturer_id``.
        """
        path = self.manufacturer_path(manufacturer_id)
        with self._locks.hold(path):
            if not path.exists():
                raise NotFoundError(
                    f"no ledger for manufacturer {manufacturer_id}",
                    context=OperationContext("ledgers.delete_manufacturer"),
                )
            path.unlink()
        logger.info("Deleted manufacturer ledger %s", manufacturer_id)

    def _read_manufacturer(self, manufacturer_id: str, path: Path) -> ManufacturerLedger:
        raw = self._read(path)
        if raw is None:
            return ManufacturerLedger(manufacturer_id)
        return ManufacturerLedger.from_dict(raw)

    # ------------------------------------------------------------------
    # Common ledger
    # ------------------------------------------------------------------

    def load_common(self) -> CommonLedger:
        with self._locks.hold(self.common_path):
            return self._read_common()

    def update_common(self, mutate: Callable[[CommonLedger], T]) -> T:
        """Apply ``mutate`` to the common ledger and persist it atomically."""
        with self._locks.hold(self.common_path):
            ledger = self._read_common()
            result = mutate(ledger)
            atomic_write_json(self.common_path, ledger.to_dict())
            return result

    def _read_common(self) -> CommonLedger:
        raw = self._read(self.common_path)
        if raw is None:
            return CommonLedger()
        return CommonLedger.from_dict(raw)

    # ------------------------------------------------------------------

    def _read(self, path: Path) -> dict | None:
        try:
            return read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            raise LedgerError(
                f"cannot read ledger file: {exc}",
                context=OperationContext("ledgers.read", str(path)),
                cause=exc,
            ) from exc
