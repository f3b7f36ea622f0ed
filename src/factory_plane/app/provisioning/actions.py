"""Create-or-fetch actions for each provisioning state.

Every action looks its resource up under the tenant naming convention
(``{resource_prefix}{project_slug}``) before creating it, so re-running a
state after a crash, a transient failure or an operator resume never
creates a duplicate. An action returns the metadata it discovered for its
system; it never writes to the store itself.

``build_steps`` wires actions and verifiers into the table the orchestrator
walks, one ``Step`` per non-terminal state.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from ..providers.stripe_client import LIVE_SUBSCRIPTION_STATUSES
from ..providers.supabase_management import HEALTHY_STATUS, project_url
from ..providers.vercel_client import ERROR_STATES, hosting_url
from ..settings import FactorySettings
from .capabilities import (
    BillingProvider,
    DatabaseProvider,
    HostingProvider,
    SiteConfigReader,
    SourceControl,
    VoiceAgentProvider,
)
from .errors import ConfigurationError, ProviderRejected
from .models import ProvisionRun
from .states import (
    AUTH_CONFIGURED,
    ELEVEN_AGENT_CREATING,
    GITHUB_CREATING,
    INIT,
    SCHEMA_MIGRATED,
    STORAGE_READY,
    STRIPE_CUSTOMER_CREATING,
    STRIPE_SUBSCRIPTION_CREATING,
    SUPABASE_CREATING,
    SUPABASE_READY,
    VERCEL_CREATING,
    VERCEL_DEPLOYING,
    system_for_state,
)
from .verifiers import (
    DeploymentVerifier,
    RepositoryVerifier,
    SiteConfigVerifier,
    StepVerifier,
    VoiceAgentVerifier,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = '1'

STORAGE_BUCKETS = ('transcripts', 'recordings')

LOCAL_REDIRECT_URL = 'http://localhost:3000/**'

TENANT_SCHEMA_SQL = """
create extension if not exists "uuid-ossp";

create table if not exists clients (
  id uuid primary key default uuid_generate_v4(),
  email text unique not null,
  name text,
  company_name text,
  subscription_tier text default 'free',
  branding jsonb default '{}',
  created_at timestamptz default now(),
  updated_at timestamptz default now()
);

create table if not exists agents (
  id uuid primary key default uuid_generate_v4(),
  client_id uuid references clients(id) on delete cascade,
  name text not null,
  slug text unique not null,
  status text default 'active',
  elevenlabs_agent_id text,
  system_prompt text,
  first_message text,
  created_at timestamptz default now(),
  updated_at timestamptz default now()
);

create table if not exists interviews (
  id uuid primary key default uuid_generate_v4(),
  agent_id uuid references agents(id) on delete cascade,
  status text default 'pending',
  conversation_id text,
  transcript text,
  summary text,
  started_at timestamptz,
  completed_at timestamptz,
  created_at timestamptz default now()
);

create table if not exists interview_transcripts (
  id uuid primary key default uuid_generate_v4(),
  interview_id uuid references interviews(id) on delete cascade,
  elevenlabs_conversation_id text unique,
  transcript jsonb,
  analysis jsonb,
  received_at timestamptz default now()
);

create index if not exists idx_agents_slug on agents(slug);
create index if not exists idx_interviews_agent_id on interviews(agent_id);
create index if not exists idx_interview_transcripts_conversation
  on interview_transcripts(elevenlabs_conversation_id);

alter table clients enable row level security;
alter table agents enable row level security;
alter table interviews enable row level security;
alter table interview_transcripts enable row level security;
"""

DEFAULT_AGENT_CONFIG: Mapping[str, Any] = MappingProxyType(
    {
        'agent': {
            'language': 'en',
            'first_message': 'Hi! Thanks for taking the time to talk with me today.',
            'prompt': {'prompt': 'You are a friendly research interviewer.'},
        },
    }
)


# ── Step result and table entry ─────────────────────────────────────


@dataclass(frozen=True, slots=True)
class StepResult:
    """What one action attempt produced.

    ``updates`` maps a system name to the keys discovered for it.
    ``not_ready`` carries a reason when the resource exists but cannot be
    used yet; the orchestrator treats it exactly like a verifier WAIT.
    """

    updates: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    not_ready: str | None = None

    @classmethod
    def done(cls, system: str | None = None, **values: Any) -> StepResult:
        if system is None or not values:
            return cls()
        return cls(updates={system: values})

    @classmethod
    def waiting(cls, reason: str) -> StepResult:
        return cls(not_ready=reason)


StepAction = Callable[[ProvisionRun], Awaitable[StepResult]]


@dataclass(frozen=True, slots=True)
class Step:
    state: str
    action: StepAction
    verifiers: tuple[StepVerifier, ...] = ()

    @property
    def system(self) -> str | None:
        return system_for_state(self.state)


@dataclass(frozen=True, slots=True)
class ProviderSet:
    """One client per external capability, injected at startup."""

    source_control: SourceControl
    database: DatabaseProvider
    hosting: HostingProvider
    voice: VoiceAgentProvider
    billing: BillingProvider
    site_config: SiteConfigReader


def _require(run: ProvisionRun, system: str, key: str) -> Any:
    value = run.metadata.system(system).get(key)
    if not value:
        raise ProviderRejected(
            f'{system}.{key} missing from run metadata; an earlier step did not record it',
            system=system,
        )
    return value


# ── Actions ─────────────────────────────────────────────────────────


class TenantActions:
    """The side effect behind each provisioning state."""

    def __init__(self, providers: ProviderSet, settings: FactorySettings) -> None:
        self._providers = providers
        self._settings = settings

    def resource_name(self, project_slug: str) -> str:
        return f'{self._settings.resource_prefix}{project_slug}'

    async def init(self, run: ProvisionRun) -> StepResult:
        return StepResult.done()

    async def create_repository(self, run: ProvisionRun) -> StepResult:
        github = self._providers.source_control
        name = self.resource_name(run.project_slug)
        repo = await github.get_repo(name)
        if repo is None:
            try:
                repo = await github.create_repo_from_template(
                    name, description=f'Platform for {run.project_slug}',
                )
            except ProviderRejected as exc:
                # 422 when a concurrent invocation created it first.
                if exc.status_code != 422:
                    raise
                repo = await github.get_repo(name)
                if repo is None:
                    raise
        else:
            logger.info('Reusing repository %s/%s', github.org, name)
        return StepResult.done(
            'github',
            repo=repo.get('full_name') or f'{github.org}/{name}',
            html_url=repo.get('html_url'),
            repo_id=repo.get('id'),
            default_branch=repo.get('default_branch') or 'main',
        )

    async def create_database(self, run: ProvisionRun) -> StepResult:
        database = self._providers.database
        name = self.resource_name(run.project_slug)
        ref = run.metadata.system('supabase').get('project_ref')
        project = await database.get_project(ref) if ref else None
        if project is None:
            project = await database.find_project(name)
        if project is None:
            project = await database.create_project(
                name, db_pass=secrets.token_urlsafe(24),
            )
        else:
            logger.info('Reusing database project %s', name)
        ref = project.get('id') or project.get('ref')
        if not ref:
            raise ProviderRejected('project response carried no reference', system='supabase')
        return StepResult.done(
            'supabase',
            project_ref=ref,
            url=project_url(ref),
            region=project.get('region') or self._settings.supabase_region,
        )

    async def await_database(self, run: ProvisionRun) -> StepResult:
        database = self._providers.database
        ref = _require(run, 'supabase', 'project_ref')
        project = await database.get_project(ref)
        if project is None:
            raise ProviderRejected(f'project {ref} no longer exists', system='supabase')
        status = project.get('status')
        if status != HEALTHY_STATUS:
            return StepResult.waiting(f'project {ref} is {status or "unknown"}')
        keys = await database.get_api_keys(ref)
        if not keys.get('anon') or not keys.get('service_role'):
            return StepResult.waiting(f'project {ref} API keys not issued yet')
        return StepResult.done(
            'supabase',
            anon_key=keys['anon'],
            service_role_key=keys['service_role'],
        )

    async def migrate_schema(self, run: ProvisionRun) -> StepResult:
        ref = _require(run, 'supabase', 'project_ref')
        await self._providers.database.run_sql(ref, TENANT_SCHEMA_SQL)
        return StepResult.done('supabase', schema_version=SCHEMA_VERSION)

    async def configure_auth(self, run: ProvisionRun) -> StepResult:
        ref = _require(run, 'supabase', 'project_ref')
        site_url = hosting_url(self.resource_name(run.project_slug))
        await self._providers.database.update_auth_config(
            ref,
            site_url=site_url,
            redirect_urls=[f'{site_url}/**', LOCAL_REDIRECT_URL],
        )
        return StepResult.done('supabase', auth_site_url=site_url)

    async def create_storage(self, run: ProvisionRun) -> StepResult:
        url = _require(run, 'supabase', 'url')
        service_role_key = _require(run, 'supabase', 'service_role_key')
        for bucket in STORAGE_BUCKETS:
            created = await self._providers.database.ensure_bucket(
                url=url, service_role_key=service_role_key, bucket_id=bucket,
            )
            if not created:
                logger.info('Storage bucket %s already exists for %s', bucket, run.project_slug)
        return StepResult.done('supabase', storage_buckets=list(STORAGE_BUCKETS))

    async def create_hosting(self, run: ProvisionRun) -> StepResult:
        hosting = self._providers.hosting
        name = self.resource_name(run.project_slug)
        site_url = hosting_url(name)
        env = {
            'NEXT_PUBLIC_SUPABASE_URL': _require(run, 'supabase', 'url'),
            'NEXT_PUBLIC_SUPABASE_ANON_KEY': _require(run, 'supabase', 'anon_key'),
            'SUPABASE_SERVICE_ROLE_KEY': _require(run, 'supabase', 'service_role_key'),
            'NEXT_PUBLIC_SITE_URL': site_url,
            'NEXT_PUBLIC_PROJECT_SLUG': run.project_slug,
        }
        project = await hosting.get_project(name)
        if project is None:
            project = await hosting.create_project(
                name, repo_full_name=_require(run, 'github', 'repo'), env=env,
            )
        else:
            logger.info('Reusing hosting project %s', name)
            await hosting.upsert_env(project['id'], env)
        return StepResult.done(
            'vercel', project_id=project['id'], project_name=name, url=site_url,
        )

    async def deploy(self, run: ProvisionRun) -> StepResult:
        """Reuse the latest deployment unless there is none or it errored."""
        hosting = self._providers.hosting
        project_id = _require(run, 'vercel', 'project_id')
        deployment = await hosting.latest_deployment(project_id)
        state = (deployment or {}).get('readyState')
        if deployment is None or state in ERROR_STATES:
            if deployment is not None:
                logger.info(
                    'Latest deployment for %s is %s; redeploying', run.project_slug, state,
                )
            github = run.metadata.system('github')
            deployment = await hosting.create_deployment(
                name=self.resource_name(run.project_slug),
                project_id=project_id,
                repo_id=_require(run, 'github', 'repo_id'),
                ref=github.get('default_branch') or 'main',
            )
        if run.metadata.system('vercel').get('deployment_id'):
            return StepResult.done()
        deployment_id = deployment.get('uid') or deployment.get('id')
        return StepResult.done('vercel', deployment_id=deployment_id)

    async def create_voice_agent(self, run: ProvisionRun) -> StepResult:
        voice = self._providers.voice
        name = self.resource_name(run.project_slug)
        agent = await voice.find_agent(name)
        if agent is None:
            agent = await voice.create_agent(name, conversation_config=DEFAULT_AGENT_CONFIG)
        else:
            logger.info('Reusing voice agent %s', name)
        agent_id = agent.get('agent_id')
        if not agent_id:
            raise ProviderRejected('agent response carried no agent_id', system='eleven')
        return StepResult.done('eleven', agent_id=agent_id, agent_name=name)

    async def create_customer(self, run: ProvisionRun) -> StepResult:
        billing = self._providers.billing
        customer = await billing.find_customer(run.project_slug)
        if customer is None:
            customer = await billing.create_customer(run.project_slug)
        return StepResult.done('stripe', customer_id=customer['id'])

    async def create_subscription(self, run: ProvisionRun) -> StepResult:
        price_id = self._settings.stripe_default_price_id
        if not price_id:
            raise ConfigurationError(
                'STRIPE_DEFAULT_PRICE_ID is not configured', system='stripe',
            )
        billing = self._providers.billing
        customer_id = _require(run, 'stripe', 'customer_id')
        live = [
            sub for sub in await billing.list_subscriptions(customer_id)
            if sub.get('status') in LIVE_SUBSCRIPTION_STATUSES
        ]
        if live:
            subscription = live[0]
        else:
            subscription = await billing.create_subscription(
                customer_id=customer_id,
                price_id=price_id,
                project_slug=run.project_slug,
            )
        return StepResult.done(
            'stripe', subscription_id=subscription['id'], price_id=price_id,
        )


# ── Step table ──────────────────────────────────────────────────────


def build_steps(
    providers: ProviderSet,
    settings: FactorySettings,
) -> Mapping[str, Step]:
    """Return the state -> Step table for the canonical sequence."""
    actions = TenantActions(providers, settings)
    repository_ready = RepositoryVerifier(
        providers.source_control, ready_file=settings.github_ready_file,
    )
    steps = (
        Step(INIT, actions.init),
        Step(GITHUB_CREATING, actions.create_repository, (repository_ready,)),
        Step(SUPABASE_CREATING, actions.create_database),
        Step(SUPABASE_READY, actions.await_database),
        Step(SCHEMA_MIGRATED, actions.migrate_schema),
        Step(AUTH_CONFIGURED, actions.configure_auth),
        Step(STORAGE_READY, actions.create_storage),
        Step(VERCEL_CREATING, actions.create_hosting),
        Step(
            VERCEL_DEPLOYING,
            actions.deploy,
            (
                DeploymentVerifier(providers.hosting),
                SiteConfigVerifier(providers.site_config),
            ),
        ),
        Step(
            ELEVEN_AGENT_CREATING,
            actions.create_voice_agent,
            (VoiceAgentVerifier(providers.voice),),
        ),
        Step(STRIPE_CUSTOMER_CREATING, actions.create_customer),
        Step(STRIPE_SUBSCRIPTION_CREATING, actions.create_subscription),
    )
    return MappingProxyType({step.state: step for step in steps})
