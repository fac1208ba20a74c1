"""
benefit_engine/services/postgrest.py - Thin async PostgREST client

Every call goes through one httpx.AsyncClient authenticated with the Supabase
service role key. Responses are validated into pydantic models by the
callers (see stores.py); this layer only knows about HTTP and JSON.

Failure modes surface as StoreError:
    - transport failure (timeout, DNS, refused)  → status_code=None
    - non-2xx response                            → status_code + decoded body
    - a 2xx body that is not a JSON array         → status_code + raw body

Usage:
    client = PostgrestClient(config)
    rows = await client.select("profiles", {"user_id": "eq.abc"})
    created = await client.insert("profile_invites", {"email": "a@x.com"})
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..config import PipelineConfig

logger = logging.getLogger(__name__)

# Postgres unique_violation
PG_UNIQUE_VIOLATION = "23505"


class StoreError(Exception):
    """A Supabase call failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def code(self) -> str | None:
        if isinstance(self.body, dict):
            code = self.body.get("code")
            return str(code) if code is not None else None
        return None

    @property
    def is_unique_violation(self) -> bool:
        """
        True when the store rejected a write because the unique key already exists.

        PostgREST also answers 409 for foreign-key and other constraint
        conflicts; those carry their own SQLSTATE and are not folded in.
        """
        if self.code is not None:
            return self.code == PG_UNIQUE_VIOLATION
        return self.status_code == 409


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class PostgrestClient:
    """Async PostgREST client bound to one Supabase project."""

    def __init__(self, config: PipelineConfig, http_client: httpx.AsyncClient | None = None):
        self._base_url = f"{config.supabase_url}/rest/v1"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(config.timeout_seconds, 5.0))
        )
        self._headers = {
            "apikey": config.service_key,
            "Authorization": f"Bearer {config.service_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        params: Mapping[str, str] | None = None,
        payload: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        url = f"{self._base_url}/{table}"
        try:
            response = await self._client.request(
                method, url, params=dict(params or {}), json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("PostgREST %s %s transport failure: %s", method, table, type(exc).__name__)
            raise StoreError(f"{method} {table} failed: {exc}") from exc

        body = _decode_body(response)
        if response.status_code >= 400:
            logger.warning(
                "PostgREST %s %s -> %d",
                method,
                table,
                response.status_code,
                extra={"status": response.status_code},
            )
            raise StoreError(
                f"{method} {table} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if not isinstance(body, list):
            raise StoreError(
                f"{method} {table} returned a non-array body",
                status_code=response.status_code,
                body=body,
            )
        return body

    async def select(self, table: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, payload: Mapping[str, Any]) -> list[dict[str, Any]]:
        return await self._request(
            "POST", table, payload=dict(payload), prefer="return=representation"
        )

    async def update(
        self, table: str, params: Mapping[str, str], payload: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        """PATCH rows matching `params`; returns the updated rows (possibly none)."""
        return await self._request(
            "PATCH", table, params=params, payload=dict(payload), prefer="return=representation"
        )
