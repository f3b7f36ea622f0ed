"""Async client for the Vercel REST API (tenant hosting projects)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .http import ProviderHTTP

logger = logging.getLogger(__name__)

SYSTEM = "vercel"

ENV_TARGETS = ("production", "preview", "development")

# Deployment readyState values reported by Vercel.
READY = "READY"
ERROR_STATES = frozenset({"ERROR", "CANCELED"})


def hosting_url(project_name: str) -> str:
    return f"https://{project_name}.vercel.app"


class VercelClient:
    """Create-or-fetch operations for tenant hosting projects."""

    def __init__(
        self,
        *,
        token: str,
        team_id: str = "",
        base_url: str = "https://api.vercel.com",
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url=base_url,
            credential=token,
            credential_name="VERCEL_TOKEN",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self._team_id = team_id

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._http.credential}"}

    def _params(self, **extra: Any) -> dict[str, Any]:
        params = {k: v for k, v in extra.items() if v is not None}
        if self._team_id:
            params["teamId"] = self._team_id
        return params

    # ── Projects ─────────────────────────────────────────────────

    async def get_project(self, name: str) -> dict[str, Any] | None:
        resp = await self._http.request(
            "GET",
            f"/v9/projects/{name}",
            headers=self._headers(),
            params=self._params(),
            allow_not_found=True,
        )
        if resp.status_code == 404:
            return None
        return ProviderHTTP.json_body(resp, system=SYSTEM)

    async def create_project(
        self,
        name: str,
        *,
        repo_full_name: str,
        env: Mapping[str, str],
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            "/v10/projects",
            headers=self._headers(),
            params=self._params(),
            json={
                "name": name,
                "framework": "nextjs",
                "gitRepository": {"type": "github", "repo": repo_full_name},
                "environmentVariables": _env_payload(env),
            },
        )
        project = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("Vercel project created: name=%s id=%s", name, project.get("id"))
        return project

    async def upsert_env(self, project_id: str, env: Mapping[str, str]) -> None:
        await self._http.request(
            "POST",
            f"/v10/projects/{project_id}/env",
            headers=self._headers(),
            params=self._params(upsert="true"),
            json=_env_payload(env),
        )

    # ── Deployments ──────────────────────────────────────────────

    async def latest_deployment(self, project_id: str) -> dict[str, Any] | None:
        resp = await self._http.request(
            "GET",
            "/v6/deployments",
            headers=self._headers(),
            params=self._params(projectId=project_id, limit=1),
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        deployments = payload.get("deployments") if isinstance(payload, dict) else None
        if not deployments:
            return None
        return deployments[0]

    async def create_deployment(
        self,
        *,
        name: str,
        project_id: str,
        repo_id: int | str,
        ref: str = "main",
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            "/v13/deployments",
            headers=self._headers(),
            params=self._params(),
            json={
                "name": name,
                "project": project_id,
                "target": "production",
                "gitSource": {"type": "github", "repoId": repo_id, "ref": ref},
            },
        )
        deployment = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("Vercel deployment triggered: project=%s id=%s", name, deployment.get("id"))
        return deployment


def _env_payload(env: Mapping[str, str]) -> list[dict[str, Any]]:
    return [
        {
            "key": key,
            "value": value,
            "type": "plain" if key.startswith("NEXT_PUBLIC_") else "encrypted",
            "target": list(ENV_TARGETS),
        }
        for key, value in env.items()
    ]
