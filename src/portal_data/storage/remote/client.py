"""
HTTP Client for a Hosted Table-Store

Thin wrapper over httpx for a PostgREST-compatible REST API (the interface
hosted Postgres platforms expose under ``/rest/v1``). Every method maps
transport and HTTP failures onto portal errors.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.portal_data.exceptions import ConnectivityError, NotFoundError, StorageQueryError

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"

# PostgREST / Postgres codes for "relation does not exist"
_MISSING_TABLE_CODES = frozenset({"42P01", "PGRST205"})

_PROVIDER_NAME = "remote_table"


def eq_filter(value: Any) -> str:
    """Render a PostgREST equality filter for ``value``."""
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    return f"eq.{value}"


class RemoteTableClient:
    """
    Authenticated REST client for one project and schema.

    Args:
        base_url: Project base URL (e.g., "https://abc.example.co")
        api_key: Service API key, sent as ``apikey`` and bearer token
        schema_name: Exposed schema selected via profile headers
        timeout_seconds: Timeout for every call
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        schema_name: str = "public",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._schema_name = schema_name
        self._timeout_seconds = timeout_seconds
        self._transport = transport

        # HTTP client (created lazily)
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Accept-Profile": self._schema_name,
                "Content-Profile": self._schema_name,
            }
            self._client = httpx.AsyncClient(
                base_url=self._base_url + REST_PREFIX,
                headers=headers,
                timeout=httpx.Timeout(self._timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        table: str | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
        representation: bool = False,
    ) -> Any:
        headers = {"Prefer": "return=representation"} if representation else {}
        try:
            response = await self._get_client().request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TransportError as e:
            raise ConnectivityError(_PROVIDER_NAME, f"{type(e).__name__}: {e}") from e

        if response.is_success:
            if not response.content:
                return None
            return response.json()
        raise self._error_for(response, method, table)

    def _error_for(self, response: httpx.Response, method: str, table: str | None) -> Exception:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or response.text or response.reason_phrase
        operation = f"{method} {table or '/'}"

        if response.status_code in (401, 403):
            return ConnectivityError(_PROVIDER_NAME, f"authentication rejected: {message}")
        if body.get("code") in _MISSING_TABLE_CODES or (
            response.status_code == 404 and table is not None
        ):
            return NotFoundError("entity kind", table or message)
        if response.status_code >= 500:
            logger.warning(f"Remote table-store error on {operation}: {message}")
        return StorageQueryError(operation, f"HTTP {response.status_code}: {message}")

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    async def describe(self) -> dict[str, Any]:
        """Fetch the API description (also the connectivity probe)."""
        document = await self._request("GET", "/")
        return document if isinstance(document, dict) else {}

    async def list_tables(self) -> list[str]:
        """Names of the tables exposed in the schema."""
        return sorted(await self.table_columns())

    async def table_columns(self) -> dict[str, set[str] | None]:
        """
        Column names per exposed table, from the API description.

        A table whose definition carries no ``properties`` maps to None
        (columns unknown).
        """
        document = await self.describe()
        columns: dict[str, set[str] | None] = {}
        for table, definition in document.get("definitions", {}).items():
            properties = definition.get("properties") if isinstance(definition, dict) else None
            columns[table] = set(properties) if isinstance(properties, dict) else None
        return columns

    async def select(self, table: str, filters: dict[str, str] | None = None) -> list[dict]:
        params = {"select": "*", **(filters or {})}
        rows = await self._request("GET", f"/{table}", table=table, params=params)
        return rows or []

    async def insert(self, table: str, rows: list[dict] | dict) -> list[dict]:
        created = await self._request(
            "POST", f"/{table}", table=table, json=rows, representation=True
        )
        return created or []

    async def update(self, table: str, filters: dict[str, str], fields: dict) -> list[dict]:
        updated = await self._request(
            "PATCH", f"/{table}", table=table, params=filters, json=fields, representation=True
        )
        return updated or []

    async def delete(
        self, table: str, filters: dict[str, str], representation: bool = False
    ) -> list[dict]:
        deleted = await self._request(
            "DELETE", f"/{table}", table=table, params=filters, representation=representation
        )
        return deleted or []
