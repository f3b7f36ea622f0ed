"""Provider capability protocols consumed by actions and verifiers.

Implementations: the httpx clients in ``factory_plane.app.providers``
(production) and the fakes in ``providers.inmemory`` (local/testing).
Every method raises the provisioning failure taxonomy, never raw httpx
errors.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence


class SourceControl(Protocol):
    org: str

    async def get_repo(self, name: str) -> dict[str, Any] | None: ...

    async def create_repo_from_template(
        self, name: str, *, description: str = '',
    ) -> dict[str, Any]: ...

    async def file_exists(self, full_name: str, path: str) -> bool: ...


class DatabaseProvider(Protocol):
    async def find_project(self, name: str) -> dict[str, Any] | None: ...

    async def create_project(self, name: str, *, db_pass: str) -> dict[str, Any]: ...

    async def get_project(self, ref: str) -> dict[str, Any] | None: ...

    async def get_api_keys(self, ref: str) -> dict[str, str]: ...

    async def run_sql(self, ref: str, query: str) -> Any: ...

    async def update_auth_config(
        self, ref: str, *, site_url: str, redirect_urls: Sequence[str],
    ) -> dict[str, Any]: ...

    async def ensure_bucket(
        self,
        *,
        url: str,
        service_role_key: str,
        bucket_id: str,
        public: bool = False,
    ) -> bool: ...


class HostingProvider(Protocol):
    async def get_project(self, name: str) -> dict[str, Any] | None: ...

    async def create_project(
        self, name: str, *, repo_full_name: str, env: Mapping[str, str],
    ) -> dict[str, Any]: ...

    async def upsert_env(self, project_id: str, env: Mapping[str, str]) -> None: ...

    async def latest_deployment(self, project_id: str) -> dict[str, Any] | None: ...

    async def create_deployment(
        self,
        *,
        name: str,
        project_id: str,
        repo_id: int | str,
        ref: str = 'main',
    ) -> dict[str, Any]: ...


class VoiceAgentProvider(Protocol):
    async def find_agent(self, name: str) -> dict[str, Any] | None: ...

    async def create_agent(
        self, name: str, *, conversation_config: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    async def get_signed_url(self, agent_id: str) -> str: ...

    async def probe(self, agent_id: str, text: str = 'ping') -> list[str]: ...


class BillingProvider(Protocol):
    async def find_customer(self, project_slug: str) -> dict[str, Any] | None: ...

    async def create_customer(self, project_slug: str) -> dict[str, Any]: ...

    async def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]: ...

    async def create_subscription(
        self, *, customer_id: str, price_id: str, project_slug: str,
    ) -> dict[str, Any]: ...


class SiteConfigReader(Protocol):
    async def fetch_site_config(self, site_url: str) -> dict[str, Any]: ...
