"""
Remote store for Biblia.
Table access on Supabase through the async supabase-py client. Every call
is scoped to the owning user id; row-level security on the server rejects
cross-owner access.
"""

from typing import Any, Awaitable, Dict, List, Optional, Union

import httpx
from supabase import AsyncClient, AsyncClientOptions, PostgrestAPIError


FAVORITES_TABLE = "favorites"
HIGHLIGHTS_TABLE = "highlights"
NOTES_TABLE = "notes"
READING_PROGRESS_TABLE = "user_reading_progress"


class RemoteStoreError(Exception):
    """A remote call failed (network error, error response or unreadable body)."""


def create_supabase_client(url: str, anon_key: str, timeout: float = 30.0) -> AsyncClient:
    """Build the shared async Supabase client used for both auth and tables."""
    options = AsyncClientOptions(postgrest_client_timeout=timeout)
    return AsyncClient(url, anon_key, options)


class RemoteStore:
    """
    Owner-scoped table access on Supabase.

    Usage:
        remote = RemoteStore(create_supabase_client(url, anon_key))
        rows = await remote.list("favorites", user_id)
    """

    def __init__(self, client: AsyncClient):
        self.client = client

    def set_access_token(self, token: Optional[str]):
        """Authorize table requests with a restored session's JWT."""
        if token:
            self.client.postgrest.auth(token)

    async def close(self):
        """Close the PostgREST HTTP session."""
        await self.client.postgrest.aclose()

    async def _execute(self, action: str, table: str, query: Awaitable[Any]) -> Any:
        try:
            return await query
        except PostgrestAPIError as e:
            raise RemoteStoreError(f"{action} {table} failed: {e.message}") from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{action} {table} failed: {e}") from e
        except ValueError as e:
            # Success status with a body that is not JSON (proxy or captive portal page)
            raise RemoteStoreError(f"{action} {table} returned an unreadable body: {e}") from e

    @staticmethod
    def _rows(response: Any) -> List[Dict[str, Any]]:
        data = response.data
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        if not isinstance(data, list):
            raise RemoteStoreError(f"Unexpected response data: {type(data).__name__}")
        return data

    async def list(self, table: str, owner_id: str,
                   order: str = "created_at", desc: bool = True) -> List[Dict[str, Any]]:
        """All rows owned by owner_id, newest first by default."""
        query = (self.client.table(table).select("*")
                 .eq("user_id", owner_id).order(order, desc=desc))
        return self._rows(await self._execute("list", table, query.execute()))

    async def select(self, table: str, owner_id: str,
                     match: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Rows owned by owner_id whose columns equal every value in match."""
        query = self.client.table(table).select("*").eq("user_id", owner_id).match(match)
        return self._rows(await self._execute("select", table, query.execute()))

    async def insert(self, table: str, owner_id: str,
                     rows: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Insert one or many rows, stamping each with owner_id. Returns the stored rows."""
        if isinstance(rows, dict):
            rows = [rows]
        payload = [{**row, "user_id": owner_id} for row in rows]
        query = self.client.table(table).insert(payload)
        return self._rows(await self._execute("insert", table, query.execute()))

    async def upsert(self, table: str, owner_id: str, row: Dict[str, Any],
                     on_conflict: str) -> List[Dict[str, Any]]:
        query = self.client.table(table).upsert({**row, "user_id": owner_id},
                                                on_conflict=on_conflict)
        return self._rows(await self._execute("upsert", table, query.execute()))

    async def update(self, table: str, owner_id: str, row_id: str,
                     values: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = self.client.table(table).update(values).eq("id", row_id).eq("user_id", owner_id)
        return self._rows(await self._execute("update", table, query.execute()))

    async def delete(self, table: str, owner_id: str, match: Dict[str, Any]):
        """Delete the owner's rows whose columns equal every value in match."""
        query = self.client.table(table).delete().eq("user_id", owner_id).match(match)
        await self._execute("delete", table, query.execute())

    async def count(self, table: str, owner_id: str) -> int:
        """Exact number of rows owned by owner_id."""
        query = (self.client.table(table).select("*", count="exact", head=True)
                 .eq("user_id", owner_id))
        response = await self._execute("count", table, query.execute())
        if response.count is None:
            raise RemoteStoreError(f"Missing row count for {table}")
        return response.count
