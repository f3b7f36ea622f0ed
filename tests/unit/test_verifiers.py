"""Step verifier tests: ADVANCE / WAIT / FAIL classification."""

from __future__ import annotations

import httpx
import pytest

from factory_plane.app.inmemory import (
    InMemoryHostingProvider,
    InMemorySiteConfigReader,
    InMemorySourceControl,
    InMemoryVoiceAgentProvider,
)
from factory_plane.app.providers import VercelClient
from factory_plane.app.provisioning.errors import (
    ConfigurationError,
    TransientProviderError,
)
from factory_plane.app.provisioning.models import RunMetadata
from factory_plane.app.provisioning.verifiers import (
    DeploymentVerifier,
    RepositoryVerifier,
    SiteConfigVerifier,
    Verdict,
    VoiceAgentVerifier,
)


def _meta(**systems) -> RunMetadata:
    return RunMetadata(systems=systems)


async def _hosting_with_deployment(*build_states: str) -> tuple[InMemoryHostingProvider, str]:
    hosting = InMemoryHostingProvider(build_states=build_states)
    project = await hosting.create_project('cx-acme-42', repo_full_name='org/cx-acme-42', env={})
    await hosting.create_deployment(name='cx-acme-42', project_id=project['id'], repo_id=1)
    return hosting, project['id']


class TestRepositoryVerifier:
    @pytest.mark.asyncio
    async def test_waits_without_recorded_repo(self):
        verifier = RepositoryVerifier(InMemorySourceControl(), ready_file='package.json')
        result = await verifier.verify(_meta())
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_advances_when_file_present(self):
        client = InMemorySourceControl()
        verifier = RepositoryVerifier(client, ready_file='package.json')
        result = await verifier.verify(_meta(github={'repo': 'org/cx-acme-42'}))
        assert result.verdict is Verdict.ADVANCE
        assert client.calls == [('file_exists', 'org/cx-acme-42', 'package.json')]

    @pytest.mark.asyncio
    async def test_waits_while_file_missing(self):
        verifier = RepositoryVerifier(InMemorySourceControl(ready=False), ready_file='package.json')
        result = await verifier.verify(_meta(github={'repo': 'org/cx-acme-42'}))
        assert result.verdict is Verdict.WAIT
        assert 'package.json' in result.reason

    @pytest.mark.asyncio
    async def test_provider_error_is_wait(self):
        client = InMemorySourceControl()
        client.fail_next('file_exists', TransientProviderError('502', system='github'))
        verifier = RepositoryVerifier(client, ready_file='package.json')
        result = await verifier.verify(_meta(github={'repo': 'org/cx-acme-42'}))
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self):
        client = InMemorySourceControl()
        client.fail_next('file_exists', ConfigurationError('GITHUB_TOKEN is not configured'))
        verifier = RepositoryVerifier(client, ready_file='package.json')
        with pytest.raises(ConfigurationError):
            await verifier.verify(_meta(github={'repo': 'org/cx-acme-42'}))


class TestDeploymentVerifier:
    @pytest.mark.asyncio
    async def test_ready_advances(self):
        hosting, project_id = await _hosting_with_deployment()
        result = await DeploymentVerifier(hosting).verify(_meta(vercel={'project_id': project_id}))
        assert result.verdict is Verdict.ADVANCE

    @pytest.mark.asyncio
    async def test_building_waits(self):
        hosting, project_id = await _hosting_with_deployment('BUILDING')
        result = await DeploymentVerifier(hosting).verify(_meta(vercel={'project_id': project_id}))
        assert result.verdict is Verdict.WAIT
        assert 'BUILDING' in result.reason

    @pytest.mark.asyncio
    async def test_error_fails(self):
        hosting, project_id = await _hosting_with_deployment('ERROR')
        result = await DeploymentVerifier(hosting).verify(_meta(vercel={'project_id': project_id}))
        assert result.verdict is Verdict.FAIL

    @pytest.mark.asyncio
    async def test_no_deployment_waits(self):
        hosting = InMemoryHostingProvider()
        result = await DeploymentVerifier(hosting).verify(_meta(vercel={'project_id': 'prj_1'}))
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_http_5xx_is_wait_not_fail(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={'error': {'message': 'unavailable'}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = VercelClient(token='tok', http_client=http)
            result = await DeploymentVerifier(client).verify(_meta(vercel={'project_id': 'prj_1'}))
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_unparseable_body_is_wait(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text='<html>')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = VercelClient(token='tok', http_client=http)
            result = await DeploymentVerifier(client).verify(_meta(vercel={'project_id': 'prj_1'}))
        assert result.verdict is Verdict.WAIT


class TestSiteConfigVerifier:
    @pytest.mark.asyncio
    async def test_matching_site_advances(self):
        verifier = SiteConfigVerifier(InMemorySiteConfigReader())
        result = await verifier.verify(_meta(vercel={'url': 'https://cx-acme-42.vercel.app'}))
        assert result.verdict is Verdict.ADVANCE

    @pytest.mark.asyncio
    async def test_mismatched_site_waits(self):
        class _Stale:
            async def fetch_site_config(self, site_url):
                return {'site_url': 'https://old.example.com'}

        result = await SiteConfigVerifier(_Stale()).verify(
            _meta(vercel={'url': 'https://cx-acme-42.vercel.app'}),
        )
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_database_mismatch_waits(self):
        class _OtherDatabase:
            async def fetch_site_config(self, site_url):
                return {'site_url': site_url, 'supabase_url': 'https://other.supabase.co'}

        result = await SiteConfigVerifier(_OtherDatabase()).verify(
            _meta(
                vercel={'url': 'https://cx-acme-42.vercel.app'},
                supabase={'url': 'https://ref0001.supabase.co'},
            ),
        )
        assert result.verdict is Verdict.WAIT


class TestVoiceAgentVerifier:
    @pytest.mark.asyncio
    async def test_reply_advances(self):
        verifier = VoiceAgentVerifier(InMemoryVoiceAgentProvider())
        result = await verifier.verify(_meta(eleven={'agent_id': 'agent_1'}))
        assert result.verdict is Verdict.ADVANCE

    @pytest.mark.asyncio
    async def test_silence_waits(self):
        verifier = VoiceAgentVerifier(InMemoryVoiceAgentProvider(silent=True))
        result = await verifier.verify(_meta(eleven={'agent_id': 'agent_1'}))
        assert result.verdict is Verdict.WAIT

    @pytest.mark.asyncio
    async def test_waits_without_agent(self):
        verifier = VoiceAgentVerifier(InMemoryVoiceAgentProvider())
        result = await verifier.verify(_meta())
        assert result.verdict is Verdict.WAIT
