"""Async client for the Supabase Management API (tenant database projects).

Distinct from ``db.supabase_client``: that one is the PostgREST client for
the factory's own control database, this one creates and configures one
Supabase project per tenant.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..provisioning.errors import ConfigurationError, ProviderRejected
from .http import ProviderHTTP, error_message

logger = logging.getLogger(__name__)

SYSTEM = "supabase"

HEALTHY_STATUS = "ACTIVE_HEALTHY"


def project_url(ref: str) -> str:
    return f"https://{ref}.supabase.co"


class SupabaseManagementClient:
    """Create-or-fetch operations for tenant Supabase projects."""

    def __init__(
        self,
        *,
        access_token: str,
        organization_id: str,
        region: str = "us-east-1",
        base_url: str = "https://api.supabase.com",
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url=base_url,
            credential=access_token,
            credential_name="SUPABASE_ACCESS_TOKEN",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self._organization_id = organization_id
        self.region = region

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._http.credential}"}

    # ── Projects ─────────────────────────────────────────────────

    async def list_projects(self) -> list[dict[str, Any]]:
        resp = await self._http.request("GET", "/v1/projects", headers=self._headers())
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        return payload if isinstance(payload, list) else []

    async def find_project(self, name: str) -> dict[str, Any] | None:
        for project in await self.list_projects():
            if project.get("name") == name:
                return project
        return None

    async def create_project(self, name: str, *, db_pass: str) -> dict[str, Any]:
        if not self._organization_id:
            raise ConfigurationError("SUPABASE_ORG_ID is not configured", system=SYSTEM)
        resp = await self._http.request(
            "POST",
            "/v1/projects",
            headers=self._headers(),
            json={
                "name": name,
                "organization_id": self._organization_id,
                "region": self.region,
                "db_pass": db_pass,
            },
        )
        project = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("Supabase project created: name=%s ref=%s", name, project.get("id"))
        return project

    async def get_project(self, ref: str) -> dict[str, Any] | None:
        resp = await self._http.request(
            "GET", f"/v1/projects/{ref}", headers=self._headers(), allow_not_found=True,
        )
        if resp.status_code == 404:
            return None
        return ProviderHTTP.json_body(resp, system=SYSTEM)

    async def get_api_keys(self, ref: str) -> dict[str, str]:
        """Return ``{key name: api key}`` (e.g. ``anon``, ``service_role``)."""
        resp = await self._http.request(
            "GET", f"/v1/projects/{ref}/api-keys", headers=self._headers(),
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        keys: dict[str, str] = {}
        if isinstance(payload, list):
            for item in payload:
                if isinstance(item, dict) and item.get("name") and item.get("api_key"):
                    keys[item["name"]] = item["api_key"]
        return keys

    # ── Configuration ────────────────────────────────────────────

    async def run_sql(self, ref: str, query: str) -> Any:
        resp = await self._http.request(
            "POST",
            f"/v1/projects/{ref}/database/query",
            headers=self._headers(),
            json={"query": query},
        )
        return ProviderHTTP.json_body(resp, system=SYSTEM)

    async def update_auth_config(
        self, ref: str, *, site_url: str, redirect_urls: Sequence[str],
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "PATCH",
            f"/v1/projects/{ref}/config/auth",
            headers=self._headers(),
            json={
                "site_url": site_url,
                "uri_allow_list": ",".join(redirect_urls),
            },
        )
        return ProviderHTTP.json_body(resp, system=SYSTEM)

    async def ensure_bucket(
        self,
        *,
        url: str,
        service_role_key: str,
        bucket_id: str,
        public: bool = False,
    ) -> bool:
        """Create a storage bucket. Returns False if it already existed."""
        resp = await self._http.request(
            "POST",
            f"{url.rstrip('/')}/storage/v1/bucket",
            headers={
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
            },
            json={"id": bucket_id, "name": bucket_id, "public": public},
            allow_statuses=frozenset({400, 409}),
        )
        if resp.status_code < 400:
            return True
        message = error_message(resp)
        # Storage reports duplicates as 409, or as 400 with a 409 body.
        if resp.status_code == 409 or "already exists" in message.lower():
            return False
        raise ProviderRejected(
            f"bucket {bucket_id!r} rejected: {message}",
            system=SYSTEM,
            status_code=resp.status_code,
        )
