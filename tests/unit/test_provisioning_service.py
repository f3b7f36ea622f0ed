"""Provisioning service tests: start, resume, status, delete and sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from factory_plane.app.operations import StaleRunDetector
from factory_plane.app.provisioning.actions import build_steps
from factory_plane.app.provisioning.errors import ProviderRejected
from factory_plane.app.provisioning.orchestrator import (
    OUTCOME_COMPLETE,
    OUTCOME_DELETED,
    OUTCOME_WAITING,
    ProvisioningOrchestrator,
)
from factory_plane.app.provisioning.service import (
    OUTCOME_RUNNING,
    InvalidProjectSlug,
    ProvisioningService,
    RunStateConflict,
    VoiceAgentNotReady,
    generate_project_slug,
    validate_project_slug,
)
from factory_plane.app.provisioning.states import (
    COMPLETE,
    FAILED,
    GITHUB_CREATING,
    INIT,
    SUPABASE_READY,
)
from factory_plane.app.provisioning.store import RunNotFound


def _service(store, providers, alerts, sleep, settings, resume_wait_polls=0, **orchestrator_kwargs):
    orchestrator = ProvisioningOrchestrator(
        store=store,
        steps=build_steps(providers, settings),
        alerts=alerts,
        sleep=sleep,
        **orchestrator_kwargs,
    )
    return ProvisioningService(
        store=store,
        orchestrator=orchestrator,
        voice=providers.voice,
        stale_detector=StaleRunDetector(timedelta(hours=72)),
        resume_wait_polls=resume_wait_polls,
    )


@pytest.fixture
def service(store, providers, alerts, sleep, settings):
    return _service(store, providers, alerts, sleep, settings)


class TestSlugs:
    @pytest.mark.parametrize('slug', ['acme-42', 'abc', 'demo-research-co', 'a' * 63])
    def test_valid(self, slug):
        assert validate_project_slug(slug) == slug

    @pytest.mark.parametrize(
        'slug', ['', 'ab', 'Acme', '-acme', 'acme-', 'acme_42', 'a' * 64, 'acme 42'],
    )
    def test_invalid(self, slug):
        with pytest.raises(InvalidProjectSlug):
            validate_project_slug(slug)

    def test_generated_slug_is_valid(self):
        slug = generate_project_slug('Acme Research, Inc.')
        assert slug.startswith('acme-research-inc-')
        assert validate_project_slug(slug) == slug

    def test_generated_slug_falls_back_for_symbols(self):
        assert generate_project_slug('!!!').startswith('platform-')

    def test_generated_slug_respects_max_length(self):
        slug = generate_project_slug('x' * 200)
        assert len(slug) <= 63
        validate_project_slug(slug)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_creates_and_completes_in_background(self, service, store):
        result = await service.start('acme-42')
        assert result.created is True
        assert result.run.state == INIT

        outcomes = await service.wait_for_background()
        assert [o.outcome for o in outcomes] == [OUTCOME_COMPLETE]
        assert (await store.get('acme-42')).state == COMPLETE

    @pytest.mark.asyncio
    async def test_start_rejects_bad_slug(self, service):
        with pytest.raises(InvalidProjectSlug):
            await service.start('Not A Slug')

    @pytest.mark.asyncio
    async def test_start_reuses_in_flight_run(self, service, store):
        await store.create('acme-42')
        await store.update('acme-42', {'state': GITHUB_CREATING})

        result = await service.start('acme-42')

        assert result.created is False
        assert result.run.state == GITHUB_CREATING
        await service.wait_for_background()
        assert (await store.get('acme-42')).state == COMPLETE

    @pytest.mark.asyncio
    async def test_start_on_complete_run_conflicts(self, service, store):
        await service.start('acme-42')
        await service.wait_for_background()
        with pytest.raises(RunStateConflict, match='COMPLETE'):
            await service.start('acme-42')

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_once(self, service, providers):
        results = await asyncio.gather(service.start('acme-42'), service.start('acme-42'))
        assert sorted(r.created for r in results) == [False, True]
        await service.wait_for_background()
        assert providers.source_control.count('create_repo_from_template') == 1


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_missing_run(self, service):
        with pytest.raises(RunNotFound):
            await service.resume('acme-42')

    @pytest.mark.asyncio
    async def test_resume_failed_run_completes(self, service, store, providers):
        providers.voice.fail_always(
            'create_agent', ProviderRejected('bad config', system='eleven', status_code=400),
        )
        await service.start('acme-42')
        await service.wait_for_background()
        assert (await store.get('acme-42')).state == FAILED

        providers.voice.recover('create_agent')
        outcome = await service.resume('acme-42')

        assert outcome.outcome == OUTCOME_COMPLETE
        assert outcome.run.state == COMPLETE

    @pytest.mark.asyncio
    async def test_resume_returns_waiting_checkpoint(self, service, store, providers):
        providers.database.polls_until_healthy = 100
        await store.create('acme-42')
        await store.update('acme-42', {'state': SUPABASE_READY})
        await store.update('acme-42', {'metadata': {'supabase': {'project_ref': 'ref0001'}}})
        await providers.database.create_project('cx-acme-42', db_pass='pw')

        outcome = await service.resume('acme-42')

        assert outcome.outcome == OUTCOME_WAITING
        assert outcome.run.state == SUPABASE_READY

    @pytest.mark.asyncio
    async def test_resume_defers_to_running_task(self, store, providers, alerts, settings):
        gate = asyncio.Event()

        async def blocked(seconds):
            await gate.wait()

        service = _service(store, providers, alerts, blocked, settings, wait_polls=1)
        providers.database.polls_until_healthy = 100
        await providers.database.create_project('cx-acme-42', db_pass='pw')
        await store.create('acme-42')
        await store.update('acme-42', {'state': SUPABASE_READY})
        await store.update('acme-42', {'metadata': {'supabase': {'project_ref': 'ref0001'}}})

        await service.start('acme-42')
        await asyncio.sleep(0)
        assert service.is_running('acme-42')

        outcome = await service.resume('acme-42')

        assert outcome.outcome == OUTCOME_RUNNING
        await service.aclose()
        assert not service.is_running('acme-42')

    @pytest.mark.asyncio
    async def test_parked_resume_is_tracked(self, store, providers, alerts, settings):
        gate = asyncio.Event()

        async def blocked(seconds):
            await gate.wait()

        service = _service(store, providers, alerts, blocked, settings, resume_wait_polls=1)
        providers.database.polls_until_healthy = 100
        await providers.database.create_project('cx-acme-42', db_pass='pw')
        await store.create('acme-42')
        await store.update('acme-42', {'state': SUPABASE_READY})
        await store.update('acme-42', {'metadata': {'supabase': {'project_ref': 'ref0001'}}})

        parked = asyncio.create_task(service.resume('acme-42'))
        for _ in range(5):
            await asyncio.sleep(0)
        assert service.is_running('acme-42')

        assert await service.sweep_active_runs() == []
        assert (await service.start('acme-42')).created is False
        assert (await service.resume('acme-42')).outcome == OUTCOME_RUNNING

        await service.delete('acme-42')
        await store.create('acme-42')
        outcome = await parked

        assert outcome.outcome == OUTCOME_DELETED
        assert outcome.run is None
        assert (await store.get('acme-42')).state == INIT
        assert not service.is_running('acme-42')


class TestStatusAndDelete:
    @pytest.mark.asyncio
    async def test_status(self, service, store):
        await store.create('acme-42')
        run = await service.status('acme-42')
        assert run.project_slug == 'acme-42'

    @pytest.mark.asyncio
    async def test_status_missing(self, service):
        with pytest.raises(RunNotFound):
            await service.status('acme-42')

    @pytest.mark.asyncio
    async def test_delete_removes_record_only(self, service, store, providers):
        await service.start('acme-42')
        await service.wait_for_background()

        await service.delete('acme-42')

        assert await store.get('acme-42') is None
        assert 'cx-acme-42' in providers.source_control.repos

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        with pytest.raises(RunNotFound):
            await service.delete('acme-42')

    @pytest.mark.asyncio
    async def test_start_after_delete_begins_fresh(self, service, store):
        await service.start('acme-42')
        await service.wait_for_background()
        await service.delete('acme-42')

        result = await service.start('acme-42')
        assert result.created is True
        await service.wait_for_background()


class TestSweeps:
    @pytest.mark.asyncio
    async def test_sweep_dispatches_only_active_runs(self, service, store):
        await store.create('acme-1')
        await store.create('acme-2')
        await store.update('acme-2', {'state': FAILED, 'error': 'x', 'failed_state': INIT})

        dispatched = await service.sweep_active_runs()

        assert dispatched == ['acme-1']
        await service.wait_for_background()
        assert (await store.get('acme-1')).state == COMPLETE
        assert (await store.get('acme-2')).state == FAILED

    @pytest.mark.asyncio
    async def test_stale_report_does_not_mutate(self, service, store):
        await store.create('acme-1')
        later = datetime.now(timezone.utc) + timedelta(hours=100)

        report = await service.stale_report(now=later)

        assert [e.run.project_slug for e in report.stale] == ['acme-1']
        assert (await store.get('acme-1')).state == INIT


class TestVoiceSession:
    @pytest.mark.asyncio
    async def test_signed_url_once_agent_exists(self, service):
        await service.start('acme-42')
        await service.wait_for_background()
        url = await service.voice_session_url('acme-42')
        assert 'agent_id=agent_1' in url

    @pytest.mark.asyncio
    async def test_no_agent_yet(self, service, store):
        await store.create('acme-42')
        with pytest.raises(VoiceAgentNotReady):
            await service.voice_session_url('acme-42')
