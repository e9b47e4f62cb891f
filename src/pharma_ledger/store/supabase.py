"""
Supabase (PostgREST) implementation of the store interface.

Talks to ``<url>/rest/v1/<table>`` over a synchronous ``httpx.Client``.
Every transport failure and every non-2xx response is raised as
:class:`~pharma_ledger.errors.StoreError` so callers only ever handle the
service's own exception types.

Usage:
    with SupabaseClient.from_settings(config.store) as store:
        rows = store.select("drugs", "*", {"manufacturer_id": "M1"})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from pharma_ledger.config import StoreSettings
from pharma_ledger.errors import OperationContext, StoreError, ValidationError
from pharma_ledger.store.base import Row, id_column

logger = logging.getLogger(__name__)


def _eq_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    """Translate equality filters to PostgREST query parameters."""
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


class SupabaseClient:
    """
    PostgREST client for the four store operations.

    Args:
        url: Project URL (``https://<project>.supabase.co``).
        key: API key; sent as both ``apikey`` and bearer token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not url or not key:
            raise ValidationError("store url and key must both be configured")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
        )

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> SupabaseClient:
        """Build a client from the ``[store]`` settings, preferring the service key."""
        return cls(settings.url, settings.active_key, timeout=settings.timeout_seconds)

    def __enter__(self) -> SupabaseClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def select(
        self, table: str, projection: str = "*", filters: Mapping[str, Any] | None = None
    ) -> list[Row]:
        params = {"select": projection or "*", **_eq_params(filters)}
        data = self._request("GET", table, "select", params=params)
        return list(data or [])

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        data = self._request("POST", table, "insert", json=dict(row))
        return _first(data)

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row:
        params = _eq_params({id_column(table): record_id})
        data = self._request("PATCH", table, "update", params=params, json=dict(patch))
        return _first(data)

    def delete(self, table: str, filters: Mapping[str, Any]) -> Row:
        if not filters:
            raise ValidationError("refusing to delete without a filter")
        data = self._request("DELETE", table, "delete", params=_eq_params(filters))
        return _first(data)

    # ------------------------------------------------------------------

    def _request(self, method: str, table: str, operation: str, **kwargs: Any) -> Any:
        context = OperationContext(f"store.{operation}", table)
        try:
            response = self._http.request(method, f"/{table}", **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Store %s on %s failed: %s", operation, table, exc)
            raise StoreError(f"request failed: {exc}", context=context, cause=exc) from exc

        if response.status_code >= 400:
            raise StoreError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                context=context,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError("response is not JSON", context=context, cause=exc) from exc


def _first(data: Any) -> Row:
    if isinstance(data, list):
        return dict(data[0]) if data else {}
    if isinstance(data, dict):
        return dict(data)
    return {}
