"""Reads the self-reported configuration of a deployed tenant site."""

from __future__ import annotations

from typing import Any

import httpx

from .http import ProviderHTTP

SYSTEM = "supabase"

DEFAULT_CONFIG_PATH = "/api/site-config"


class SiteConfigClient:
    """Fetches ``{site_url}/api/site-config`` from a tenant deployment.

    The endpoint is public, so no credential is attached.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        config_path: str = DEFAULT_CONFIG_PATH,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url="",
            credential="",
            credential_name="",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self._config_path = config_path

    async def fetch_site_config(self, site_url: str) -> dict[str, Any]:
        resp = await self._http.request(
            "GET", f"{site_url.rstrip('/')}{self._config_path}", headers={},
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        return payload if isinstance(payload, dict) else {}
