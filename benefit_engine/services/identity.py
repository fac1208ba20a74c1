"""
Supabase Auth (GoTrue) client used for passwordless sign-in.

Only the OTP request is used: the engine asks GoTrue to email a magic link
or 6-digit code, and the client verifies it directly with Supabase.
"""

from __future__ import annotations

import logging

import httpx

from ..config import PipelineConfig
from .postgrest import StoreError, _decode_body

logger = logging.getLogger(__name__)


class IdentityClient:
    def __init__(self, config: PipelineConfig, http_client: httpx.AsyncClient | None = None):
        self._url = f"{config.supabase_url}/auth/v1/otp"
        self._service_key = config.service_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_otp(self, email: str, create_user: bool = True) -> None:
        """Ask GoTrue to send a one-time sign-in code to `email`."""
        try:
            response = await self._client.post(
                self._url,
                json={"email": email, "create_user": create_user},
                headers={"apikey": self._service_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"OTP request failed: {exc}") from exc

        if response.status_code >= 400:
            body = _decode_body(response)
            logger.warning("OTP request rejected with %d", response.status_code)
            raise StoreError("OTP request rejected", status_code=response.status_code, body=body)
