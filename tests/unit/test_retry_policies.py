"""Retry policy registry and retry bookkeeping tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from factory_plane.app.provisioning.retry import (
    DEFAULT_POLICY,
    RETRY_POLICIES,
    RetryBook,
    RetryPolicy,
    policy_for_state,
    policy_for_system,
)
from factory_plane.app.provisioning.states import INIT, SUPABASE_CREATING
from factory_plane.app.provisioning.store import RunNotFound


class TestRetryPolicy:
    def test_supabase_backoff_sequence(self):
        policy = RETRY_POLICIES['supabase']
        assert [policy.delay_seconds(n) for n in range(1, 7)] == [
            2.0, 4.0, 8.0, 16.0, 20.0, 20.0,
        ]

    @pytest.mark.parametrize('system', sorted(RETRY_POLICIES))
    def test_delays_never_decrease(self, system):
        policy = RETRY_POLICIES[system]
        delays = [policy.delay_ms(n) for n in range(1, 40)]
        assert delays == sorted(delays)
        assert max(delays) == policy.max_delay_ms

    def test_attempt_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=1, base_delay_ms=10, max_delay_ms=10).delay_ms(0)

    def test_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=1, base_delay_ms=100, max_delay_ms=10)


class TestPolicyLookup:
    def test_every_system_has_a_policy(self):
        assert set(RETRY_POLICIES) == {'github', 'supabase', 'vercel', 'eleven', 'stripe'}

    def test_init_uses_default_policy(self):
        assert policy_for_state(INIT) is DEFAULT_POLICY

    def test_state_maps_to_system_policy(self):
        assert policy_for_state(SUPABASE_CREATING) is RETRY_POLICIES['supabase']

    def test_unknown_system_raises(self):
        with pytest.raises(KeyError, match='heroku'):
            policy_for_system('heroku')


class TestRetryBook:
    @pytest.mark.asyncio
    async def test_record_retry_persists_count_and_timestamp(self, store):
        await store.create('acme-42')
        book = RetryBook(store)
        at = datetime(2030, 1, 1, tzinfo=timezone.utc)
        run = await book.record_retry('acme-42', now=at)
        assert run.retry_count == 1
        assert run.metadata.last_retry_at == at.isoformat()
        run = await book.record_retry('acme-42', now=at)
        assert (await store.get('acme-42')).retry_count == 2

    @pytest.mark.asyncio
    async def test_should_retry_until_budget_spent(self, store):
        await store.create('acme-42')
        await store.update('acme-42', {'state': SUPABASE_CREATING})
        book = RetryBook(store)
        for _ in range(RETRY_POLICIES['supabase'].max_retries):
            assert await book.should_retry('acme-42')
            await book.record_retry('acme-42')
        assert not await book.should_retry('acme-42')

    @pytest.mark.asyncio
    async def test_missing_run_raises(self, store):
        with pytest.raises(RunNotFound):
            await RetryBook(store).should_retry('missing')

    @pytest.mark.asyncio
    async def test_next_delay_tracks_retry_count(self, store):
        await store.create('acme-42')
        await store.update('acme-42', {'state': SUPABASE_CREATING})
        book = RetryBook(store)
        run = await store.get('acme-42')
        assert book.next_delay_seconds(run) == 2.0
        run = await book.record_retry('acme-42')
        run = await book.record_retry('acme-42')
        assert book.next_delay_seconds(run) == 4.0
