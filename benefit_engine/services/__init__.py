"""
Supabase-backed services.

SupabaseServices bundles one shared httpx client with the typed stores so the
app (or a test) builds them once and hands them to routers and pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from ..config import PipelineConfig
from .identity import IdentityClient
from .postgrest import PostgrestClient, StoreError
from .stores import BenefitStore, InviteStore, ProfileStore, RoleStore


@dataclass
class SupabaseServices:
    config: PipelineConfig
    http_client: httpx.AsyncClient
    roles: RoleStore
    profiles: ProfileStore
    invites: InviteStore
    benefits: BenefitStore
    identity: IdentityClient

    @classmethod
    def from_config(
        cls, config: PipelineConfig, http_client: httpx.AsyncClient | None = None
    ) -> "SupabaseServices":
        client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(config.timeout_seconds, 5.0))
        )
        rest = PostgrestClient(config, client)
        return cls(
            config=config,
            http_client=client,
            roles=RoleStore(rest),
            profiles=ProfileStore(rest),
            invites=InviteStore(rest),
            benefits=BenefitStore(rest),
            identity=IdentityClient(config, client),
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()


def get_services(request: Request) -> SupabaseServices:
    """FastAPI dependency: the services bundle built in the app lifespan."""
    return request.app.state.services


__all__ = [
    "BenefitStore",
    "IdentityClient",
    "InviteStore",
    "PostgrestClient",
    "ProfileStore",
    "RoleStore",
    "StoreError",
    "SupabaseServices",
    "get_services",
]
