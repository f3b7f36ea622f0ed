"""Step verifiers: readiness checks for asynchronous provider operations.

Each verifier looks at a run's metadata, polls one external system and
answers ``ADVANCE`` (ready), ``WAIT`` (check again later) or ``FAIL`` (the
provider reported a definitive error). Network failures, unexpected status
codes and unparseable bodies are ``WAIT``; only an explicit error signal
from the provider is ``FAIL``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from ..providers.vercel_client import ERROR_STATES, READY
from .capabilities import (
    HostingProvider,
    SiteConfigReader,
    SourceControl,
    VoiceAgentProvider,
)
from .errors import ConfigurationError, ProvisioningError
from .models import RunMetadata

logger = logging.getLogger(__name__)


class Verdict(str, enum.Enum):
    ADVANCE = 'ADVANCE'
    WAIT = 'WAIT'
    FAIL = 'FAIL'


@dataclass(frozen=True, slots=True)
class Verification:
    verdict: Verdict
    reason: str = ''

    @classmethod
    def advance(cls) -> Verification:
        return cls(Verdict.ADVANCE)

    @classmethod
    def wait(cls, reason: str) -> Verification:
        return cls(Verdict.WAIT, reason)

    @classmethod
    def fail(cls, reason: str) -> Verification:
        return cls(Verdict.FAIL, reason)


class StepVerifier(Protocol):
    system: str

    async def verify(self, metadata: RunMetadata) -> Verification:
        ...


def _wait_on_error(system: str, exc: Exception) -> Verification:
    logger.info('%s verifier treating error as WAIT: %s', system, exc)
    return Verification.wait(str(exc))


# ── Source control ──────────────────────────────────────────────────


class RepositoryVerifier:
    """Ready once a known file is fetchable from the new repository."""

    system = 'github'

    def __init__(self, client: SourceControl, *, ready_file: str) -> None:
        self._client = client
        self._ready_file = ready_file

    async def verify(self, metadata: RunMetadata) -> Verification:
        repo = metadata.system('github').get('repo')
        if not repo:
            return Verification.wait('repository not recorded yet')
        try:
            exists = await self._client.file_exists(repo, self._ready_file)
        except ConfigurationError:
            raise
        except (ProvisioningError, httpx.HTTPError, ValueError) as exc:
            return _wait_on_error(self.system, exc)
        if exists:
            return Verification.advance()
        return Verification.wait(f'{self._ready_file} not yet present in {repo}')


# ── Hosting ─────────────────────────────────────────────────────────


class DeploymentVerifier:
    """Ready once the latest deployment is READY; FAIL on a reported build error.

    The latest deployment is checked rather than the first one recorded, so a
    redeploy triggered on resume is what gets verified.
    """

    system = 'vercel'

    def __init__(self, client: HostingProvider) -> None:
        self._client = client

    async def verify(self, metadata: RunMetadata) -> Verification:
        project_id = metadata.system('vercel').get('project_id')
        if not project_id:
            return Verification.wait('hosting project not recorded yet')
        try:
            deployment = await self._client.latest_deployment(project_id)
        except ConfigurationError:
            raise
        except (ProvisioningError, httpx.HTTPError, ValueError) as exc:
            return _wait_on_error(self.system, exc)

        if not isinstance(deployment, dict):
            return Verification.wait('no deployment yet')
        deployment_id = deployment.get('uid') or deployment.get('id')
        ready_state = deployment.get('readyState') or deployment.get('status')
        if ready_state == READY:
            return Verification.advance()
        if ready_state in ERROR_STATES:
            detail = deployment.get('errorMessage') or deployment.get('errorCode') or ready_state
            return Verification.fail(f'deployment {deployment_id} failed: {detail}')
        return Verification.wait(f'deployment {deployment_id} is {ready_state or "pending"}')


# ── Database provider ──────────────────────────────────────────────


class SiteConfigVerifier:
    """Ready once the deployed site reports the expected hosting URL.

    Cross-checks that the deployment and the database configuration agree
    before the tenant stack is declared live.
    """

    system = 'supabase'

    def __init__(self, client: SiteConfigReader) -> None:
        self._client = client

    async def verify(self, metadata: RunMetadata) -> Verification:
        site_url = metadata.system('vercel').get('url')
        if not site_url:
            return Verification.wait('hosting URL not recorded yet')
        try:
            body = await self._client.fetch_site_config(site_url)
        except (ProvisioningError, httpx.HTTPError, ValueError) as exc:
            return _wait_on_error(self.system, exc)

        if body.get('site_url') != site_url:
            return Verification.wait(
                f'site reports {body.get("site_url")!r}, expected {site_url!r}'
            )
        expected_db = metadata.system('supabase').get('url')
        reported_db = body.get('supabase_url')
        if expected_db and reported_db and reported_db != expected_db:
            return Verification.wait('site points at a different database project')
        return Verification.advance()


# ── Voice agent ─────────────────────────────────────────────────────


class VoiceAgentVerifier:
    """Ready once a probe message to the agent produces any output."""

    system = 'eleven'

    def __init__(self, client: VoiceAgentProvider, *, probe_text: str = 'ping') -> None:
        self._client = client
        self._probe_text = probe_text

    async def verify(self, metadata: RunMetadata) -> Verification:
        agent_id = metadata.system('eleven').get('agent_id')
        if not agent_id:
            return Verification.wait('voice agent not recorded yet')
        try:
            replies = await self._client.probe(agent_id, self._probe_text)
        except ConfigurationError:
            raise
        except (ProvisioningError, httpx.HTTPError, ValueError) as exc:
            return _wait_on_error(self.system, exc)
        if replies:
            return Verification.advance()
        return Verification.wait('voice agent returned no output')
