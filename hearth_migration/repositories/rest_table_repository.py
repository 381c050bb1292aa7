"""Store B adapter: CRUD against Supabase's PostgREST endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx

from hearth_migration.config import SupabaseConfig, get_config
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.diffing import to_jsonable
from hearth_migration.repositories.base import BaseRepository

logger = get_logger(__name__)


class RestTableError(Exception):
    """Non-2xx response from the REST table store."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def build_supabase_client(cfg: Optional[SupabaseConfig] = None, **kwargs: Any) -> httpx.AsyncClient:
    """AsyncClient pointed at `<SUPABASE_URL>/rest/v1` with service-role auth headers."""
    cfg = cfg or get_config().supabase
    if not cfg.url or not cfg.service_role_key:
        raise RuntimeError(
            "SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not set. "
            "Please define them in your environment or in a .env file."
        )
    return httpx.AsyncClient(
        base_url=cfg.url.rstrip("/") + "/rest/v1",
        headers={
            "apikey": cfg.service_role_key,
            "Authorization": f"Bearer {cfg.service_role_key}",
        },
        timeout=cfg.timeout_seconds,
        **kwargs,
    )


def _eq(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class RestTableRepository(BaseRepository):
    """
    One Supabase table as a repository.

    Args:
        client: AsyncClient whose base_url is the PostgREST root
        table: Table name
        id_field: Primary key column
        soft_delete_field: When set, delete() stamps this column and reads skip stamped rows
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        table: str,
        *,
        id_field: str = "id",
        soft_delete_field: Optional[str] = None,
    ):
        self._client = client
        self.table = table
        self.id_field = id_field
        self.soft_delete_field = soft_delete_field

    def _params(self, filters: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
        params = {k: _eq(v) for k, v in (filters or {}).items()}
        if self.soft_delete_field:
            params.setdefault(self.soft_delete_field, "is.null")
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        r = await self._client.request(method, path, params=params, json=json, headers=headers)
        if r.status_code >= 400:
            try:
                details = r.json()
            except ValueError:
                details = r.text
            message = details.get("message") if isinstance(details, dict) else None
            raise RestTableError(
                f"{method} {path} failed ({r.status_code}): {message or details}",
                status_code=r.status_code,
                details=details,
            )
        if not r.content:
            return None
        return r.json()

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST", f"/{self.table}", json=to_jsonable(dict(data)), prefer="return=representation"
        )
        if not rows:
            raise RestTableError(f"Insert into {self.table} returned no rows")
        return rows[0]

    async def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        params = self._params({self.id_field: record_id})
        params["select"] = "*"
        params["limit"] = "1"
        rows = await self._request("GET", f"/{self.table}", params=params)
        return rows[0] if rows else None

    async def list(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = self._params(filters)
        params["select"] = "*"
        params["order"] = f"{self.id_field}.asc"
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", f"/{self.table}", params=params) or []

    async def update(self, record_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH",
            f"/{self.table}",
            params=self._params({self.id_field: record_id}),
            json=to_jsonable(dict(data)),
            prefer="return=representation",
        )
        if not rows:
            raise LookupError(f"{self.table} {record_id} not found")
        return rows[0]

    async def delete(self, record_id: Any) -> None:
        params = {self.id_field: _eq(record_id)}
        if self.soft_delete_field:
            await self._request(
                "PATCH",
                f"/{self.table}",
                params=params,
                json={self.soft_delete_field: datetime.now(timezone.utc).isoformat()},
                prefer="return=minimal",
            )
            return
        await self._request("DELETE", f"/{self.table}", params=params, prefer="return=minimal")

    async def rpc(self, function: str, params: Mapping[str, Any]) -> Any:
        """Call a stored procedure."""
        return await self._request("POST", f"/rpc/{function}", json=to_jsonable(dict(params)))
