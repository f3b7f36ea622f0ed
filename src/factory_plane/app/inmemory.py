"""In-memory provider implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the capability
protocols in ``provisioning.capabilities`` but keep every resource in
dicts, record each call in ``calls`` and can be told to fail.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from .provisioning.actions import ProviderSet
from .provisioning.errors import ProviderRejected


class _Recorder:
    """Call log plus scripted failures keyed by method name."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self._next_failures: dict[str, list[BaseException]] = {}
        self._always_fail: dict[str, BaseException] = {}

    def fail_next(self, method: str, *errors: BaseException) -> None:
        """Raise ``errors`` from the next calls to ``method``, in order."""
        self._next_failures.setdefault(method, []).extend(errors)

    def fail_always(self, method: str, error: BaseException) -> None:
        self._always_fail[method] = error

    def recover(self, method: str) -> None:
        self._always_fail.pop(method, None)
        self._next_failures.pop(method, None)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        queued = self._next_failures.get(method)
        if queued:
            raise queued.pop(0)
        if method in self._always_fail:
            raise self._always_fail[method]


class InMemorySourceControl(_Recorder):
    def __init__(self, *, org: str = "local-org", ready: bool = True) -> None:
        super().__init__()
        self.org = org
        self.ready = ready
        self.repos: dict[str, dict[str, Any]] = {}

    async def get_repo(self, name: str) -> dict[str, Any] | None:
        self._record("get_repo", name)
        return self.repos.get(name)

    async def create_repo_from_template(
        self, name: str, *, description: str = "",
    ) -> dict[str, Any]:
        self._record("create_repo_from_template", name)
        if name in self.repos:
            raise ProviderRejected(
                f"repository {name} already exists", system="github", status_code=422,
            )
        repo = {
            "id": len(self.repos) + 1,
            "full_name": f"{self.org}/{name}",
            "html_url": f"https://github.com/{self.org}/{name}",
            "default_branch": "main",
            "description": description,
        }
        self.repos[name] = repo
        return repo

    async def file_exists(self, full_name: str, path: str) -> bool:
        self._record("file_exists", full_name, path)
        return self.ready


class InMemoryDatabaseProvider(_Recorder):
    """Projects report COMING_UP for ``polls_until_healthy`` status reads."""

    def __init__(self, *, polls_until_healthy: int = 0) -> None:
        super().__init__()
        self.polls_until_healthy = polls_until_healthy
        self.projects: dict[str, dict[str, Any]] = {}
        self.sql: list[tuple[str, str]] = []
        self.auth_config: dict[str, dict[str, Any]] = {}
        self.buckets: set[tuple[str, str]] = set()

    async def find_project(self, name: str) -> dict[str, Any] | None:
        self._record("find_project", name)
        for project in self.projects.values():
            if project["name"] == name:
                return project
        return None

    async def create_project(self, name: str, *, db_pass: str) -> dict[str, Any]:
        self._record("create_project", name)
        ref = f"ref{len(self.projects) + 1:04d}"
        project = {"id": ref, "name": name, "region": "local", "status": "COMING_UP"}
        self.projects[ref] = project
        return project

    async def get_project(self, ref: str) -> dict[str, Any] | None:
        self._record("get_project", ref)
        project = self.projects.get(ref)
        if project is None:
            return None
        if self.polls_until_healthy > 0:
            self.polls_until_healthy -= 1
        else:
            project["status"] = "ACTIVE_HEALTHY"
        return project

    async def get_api_keys(self, ref: str) -> dict[str, str]:
        self._record("get_api_keys", ref)
        return {"anon": f"anon-{ref}", "service_role": f"service-{ref}"}

    async def run_sql(self, ref: str, query: str) -> Any:
        self._record("run_sql", ref)
        self.sql.append((ref, query))
        return []

    async def update_auth_config(
        self, ref: str, *, site_url: str, redirect_urls: Sequence[str],
    ) -> dict[str, Any]:
        self._record("update_auth_config", ref, site_url)
        config = {"site_url": site_url, "uri_allow_list": ",".join(redirect_urls)}
        self.auth_config[ref] = config
        return config

    async def ensure_bucket(
        self,
        *,
        url: str,
        service_role_key: str,
        bucket_id: str,
        public: bool = False,
    ) -> bool:
        self._record("ensure_bucket", url, bucket_id)
        key = (url, bucket_id)
        if key in self.buckets:
            return False
        self.buckets.add(key)
        return True


class InMemoryHostingProvider(_Recorder):
    """Deployments are READY unless ``build_states`` scripts a progression.

    Each ``latest_deployment`` read pops the next entry of ``build_states``
    into the latest deployment's ``readyState``.
    """

    def __init__(self, *, build_states: Sequence[str] = ()) -> None:
        super().__init__()
        self.build_states = list(build_states)
        self.projects: dict[str, dict[str, Any]] = {}
        self.env: dict[str, dict[str, str]] = {}
        self.deployments: dict[str, list[dict[str, Any]]] = {}

    async def get_project(self, name: str) -> dict[str, Any] | None:
        self._record("get_project", name)
        return self.projects.get(name)

    async def create_project(
        self, name: str, *, repo_full_name: str, env: Mapping[str, str],
    ) -> dict[str, Any]:
        self._record("create_project", name)
        project = {"id": f"prj_{len(self.projects) + 1}", "name": name, "repo": repo_full_name}
        self.projects[name] = project
        self.env[project["id"]] = dict(env)
        return project

    async def upsert_env(self, project_id: str, env: Mapping[str, str]) -> None:
        self._record("upsert_env", project_id)
        self.env.setdefault(project_id, {}).update(env)

    async def latest_deployment(self, project_id: str) -> dict[str, Any] | None:
        self._record("latest_deployment", project_id)
        deployments = self.deployments.get(project_id)
        if not deployments:
            return None
        latest = deployments[-1]
        if self.build_states:
            latest["readyState"] = self.build_states.pop(0)
        return latest

    async def create_deployment(
        self,
        *,
        name: str,
        project_id: str,
        repo_id: int | str,
        ref: str = "main",
    ) -> dict[str, Any]:
        self._record("create_deployment", project_id)
        deployments = self.deployments.setdefault(project_id, [])
        deployment = {
            "uid": f"dpl_{project_id}_{len(deployments) + 1}",
            "name": name,
            "readyState": "READY",
        }
        deployments.append(deployment)
        return deployment


class InMemoryVoiceAgentProvider(_Recorder):
    def __init__(self, *, silent: bool = False) -> None:
        super().__init__()
        self.silent = silent
        self.agents: dict[str, dict[str, Any]] = {}

    async def find_agent(self, name: str) -> dict[str, Any] | None:
        self._record("find_agent", name)
        return self.agents.get(name)

    async def create_agent(
        self, name: str, *, conversation_config: Mapping[str, Any],
    ) -> dict[str, Any]:
        self._record("create_agent", name)
        agent = {"agent_id": f"agent_{len(self.agents) + 1}", "name": name}
        self.agents[name] = agent
        return agent

    async def get_signed_url(self, agent_id: str) -> str:
        self._record("get_signed_url", agent_id)
        return f"wss://voice.local/v1/convai/conversation?agent_id={agent_id}"

    async def probe(self, agent_id: str, text: str = "ping") -> list[str]:
        self._record("probe", agent_id)
        return [] if self.silent else [f"echo: {text}"]


class InMemoryBillingProvider(_Recorder):
    def __init__(self) -> None:
        super().__init__()
        self.customers: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, list[dict[str, Any]]] = {}

    async def find_customer(self, project_slug: str) -> dict[str, Any] | None:
        self._record("find_customer", project_slug)
        return self.customers.get(project_slug)

    async def create_customer(self, project_slug: str) -> dict[str, Any]:
        self._record("create_customer", project_slug)
        customer = {"id": f"cus_{len(self.customers) + 1}", "metadata": {"project_slug": project_slug}}
        self.customers[project_slug] = customer
        return customer

    async def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        self._record("list_subscriptions", customer_id)
        return list(self.subscriptions.get(customer_id, []))

    async def create_subscription(
        self, *, customer_id: str, price_id: str, project_slug: str,
    ) -> dict[str, Any]:
        self._record("create_subscription", customer_id, price_id)
        subs = self.subscriptions.setdefault(customer_id, [])
        subscription = {
            "id": f"sub_{customer_id}_{len(subs) + 1}",
            "status": "active",
            "price": price_id,
        }
        subs.append(subscription)
        return subscription


class InMemorySiteConfigReader(_Recorder):
    """Every deployed site echoes back the URL it was fetched from."""

    async def fetch_site_config(self, site_url: str) -> dict[str, Any]:
        self._record("fetch_site_config", site_url)
        return {"site_url": site_url.rstrip("/")}


def build_inmemory_providers() -> ProviderSet:
    return ProviderSet(
        source_control=InMemorySourceControl(),
        database=InMemoryDatabaseProvider(),
        hosting=InMemoryHostingProvider(),
        voice=InMemoryVoiceAgentProvider(),
        billing=InMemoryBillingProvider(),
        site_config=InMemorySiteConfigReader(),
    )
