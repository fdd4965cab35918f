"""
Read-only client for the hosted Postgres store.

The ERP database lives in Supabase, which exposes every table over PostgREST.  The chat assistant only
ever reads, so this module implements exactly one operation, :meth:`SupabaseStore.select`, on top of
an ``httpx.AsyncClient``.  Requests authenticate with the service-role key and must therefore only be
issued server-side.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
)

import httpx

from salesdesk.config import settings

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the backing store cannot answer a query."""


class StoreConfigError(StoreError):
    """Raised when the store URL or service key is not configured."""


class DataStore(Protocol):
    """The only capability the data access functions need from a store."""

    async def select(
        self,
        table: str,
        columns: str,
        *,
        filters: Optional[Mapping[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return the rows of *table* matching *filters*."""


class SupabaseStore:
    """
    Thin PostgREST wrapper.

    Parameters
    ----------
    url:
        Project URL, e.g. ``https://xyz.supabase.co``.
    service_key:
        Service-role key used for both the ``apikey`` and bearer headers.
    client:
        Optional pre-built ``httpx.AsyncClient`` (tests pass one with a mock transport).  When omitted
        a client is created and owned by the store.
    """

    def __init__(
        self,
        url: str | None,
        service_key: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self._url = (url or "").rstrip("/")
        self._service_key = service_key or ""
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls) -> "SupabaseStore":
        """Build a store from ``SUPABASE_URL`` / ``SUPABASE_SERVICE_ROLE_KEY``."""
        return cls(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)

    @property
    def configured(self) -> bool:
        """True when both the project URL and the service key are set."""
        return bool(self._url and self._service_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }

    async def select(
        self,
        table: str,
        columns: str,
        *,
        filters: Optional[Mapping[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run one ``GET /rest/v1/<table>`` query.

        *filters* use PostgREST operator syntax (``{"id": "eq.4"}``, ``{"name": "ilike.*phone*"}``)
        and *columns* may embed related tables (``"id, product:Product(id, name)"``).

        Raises
        ------
        StoreConfigError
            If the store URL or key is missing.
        StoreError
            On transport failures, non-2xx responses or a body that is not a JSON array.
        """
        if not self.configured:
            raise StoreConfigError(
                "Missing environment variables: SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY"
            )

        params: Dict[str, str] = {"select": columns.replace(" ", "")}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        endpoint = f"{self._url}/rest/v1/{table}"
        logger.debug("Store query %s params=%s", table, params)
        try:
            resp = await self._client.get(endpoint, params=params, headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"Query on '{table}' failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"Query on '{table}' failed: {exc}") from exc

        try:
            rows = resp.json()
        except ValueError as exc:
            logger.debug("Non-JSON body from %s: %.200s", table, resp.text)
            raise StoreError(f"Invalid JSON from '{table}'") from exc
        if not isinstance(rows, list):
            raise StoreError(f"Unexpected response shape for '{table}'")
        return rows

    async def aclose(self) -> None:
        """Close the underlying HTTP client if the store created it."""
        if self._owns_client:
            await self._client.aclose()
