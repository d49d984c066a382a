"""PostgREST client for the `sogood_rag` table."""

import logging
from typing import Any

import httpx

from sogood.config import Settings
from sogood.errors import StoreError
from sogood_models import ConversationRecord

logger = logging.getLogger(__name__)

ROW_COLUMNS = "id,company,type,social_entry,context,title,messages,created_at"
SNIPPET_COLUMNS = "id,company,type,title,social_entry,context,created_at"

QueryParams = dict[str, str | int | None]


class RagStore:
    """Row store client issuing simple filtered PostgREST queries."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.table = settings.supabase_table
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self):
        """Create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.store_timeout_seconds,
                transport=self._transport,
            )

    async def disconnect(self):
        """Close the shared HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        key = self.settings.supabase_key
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: QueryParams | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send a request to the REST API and decode the JSON answer.

        Raises:
            ConfigurationError: if the store is not configured
            StoreError: on any non-2xx response

        """
        self.settings.require_store()
        await self.connect()

        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        url = f"{self.settings.supabase_rest_url}/{path.lstrip('/')}"
        try:
            response = await self._client.request(
                method,
                url,
                params=query,
                json=json_body,
                headers=self._headers(prefer),
            )
        except httpx.RequestError as e:
            logger.error(f"Store {method} {path} request error: {e}")
            raise StoreError(f"Supabase REST request failed: {str(e)}") from e

        if response.is_error:
            body = response.text
            logger.error(f"Store {method} {path} failed: {response.status_code} {body[:200]}")
            raise StoreError(
                f"Supabase REST error {response.status_code} {response.reason_phrase}: {body[:500]}",
                status=response.status_code,
                body=body,
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Store {method} {path} returned malformed JSON")
            raise StoreError(
                f"Malformed Supabase REST response: {response.text[:500]}",
                status=response.status_code,
                body=response.text,
            ) from e

    # ============= Row Operations =============

    async def select(
        self,
        filters: QueryParams,
        columns: str = ROW_COLUMNS,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[ConversationRecord]:
        """Select rows matching equality / `or` filters."""
        params: QueryParams = {"select": columns, **filters}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        rows = await self.request("GET", self.table, params=params)
        return [ConversationRecord.model_validate(row) for row in rows or []]

    async def get_row(self, row_id: str) -> ConversationRecord | None:
        """Get a single row by ID."""
        rows = await self.select({"id": f"eq.{row_id}"}, limit=1)
        return rows[0] if rows else None

    async def upsert(self, row: dict[str, Any]) -> ConversationRecord | None:
        """Insert or merge a row by primary key, returning the stored representation."""
        saved = await self.request(
            "POST",
            self.table,
            params={"on_conflict": "id"},
            json_body=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not saved:
            return None
        return ConversationRecord.model_validate(saved[0])

    async def delete(self, filters: QueryParams) -> None:
        """Delete rows matching the filters."""
        await self.request("DELETE", self.table, params=filters)

    async def health(self) -> tuple[bool, int, str]:
        """Probe the Supabase auth health endpoint."""
        self.settings.require_store()
        await self.connect()
        url = f"{self.settings.supabase_url.rstrip('/')}/auth/v1/health"
        response = await self._client.get(url, headers=self._headers())
        return response.is_success, response.status_code, response.text
