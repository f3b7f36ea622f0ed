"""Async client for the GitHub REST API (tenant repositories).

Repositories are generated from a template repository inside the
configured organization and are always private.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .http import ProviderHTTP

logger = logging.getLogger(__name__)

SYSTEM = "github"


class GitHubClient:
    """Create-or-fetch operations for tenant repositories."""

    def __init__(
        self,
        *,
        token: str,
        org: str,
        template_repo: str,
        base_url: str = "https://api.github.com",
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url=base_url,
            credential=token,
            credential_name="GITHUB_TOKEN",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )
        self.org = org
        self.template_repo = template_repo

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._http.credential}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def get_repo(self, name: str) -> dict[str, Any] | None:
        """Return repository metadata, or None if it does not exist."""
        resp = await self._http.request(
            "GET",
            f"/repos/{self.org}/{name}",
            headers=self._headers(),
            allow_not_found=True,
        )
        if resp.status_code == 404:
            return None
        return ProviderHTTP.json_body(resp, system=SYSTEM)

    async def create_repo_from_template(
        self, name: str, *, description: str = "",
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            f"/repos/{self.org}/{self.template_repo}/generate",
            headers=self._headers(),
            json={
                "owner": self.org,
                "name": name,
                "description": description,
                "private": True,
                "include_all_branches": False,
            },
        )
        repo = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("GitHub repository created: %s/%s", self.org, name)
        return repo

    async def file_exists(self, full_name: str, path: str) -> bool:
        """True when ``path`` is fetchable from the repository's default branch."""
        resp = await self._http.request(
            "GET",
            f"/repos/{full_name}/contents/{path.lstrip('/')}",
            headers=self._headers(),
            allow_not_found=True,
        )
        return resp.status_code == 200
