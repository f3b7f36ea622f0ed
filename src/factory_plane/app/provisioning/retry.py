"""Per-system retry policies and retry bookkeeping.

Delays are exponential from ``base_delay_ms`` and capped at
``max_delay_ms``, so the sequence for a policy never decreases.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from .models import LAST_RETRY_AT_KEY, RETRY_COUNT_KEY, ProvisionRun
from .states import system_for_state
from .store import ProvisionStore, RunNotFound


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int
    base_delay_ms: int
    max_delay_ms: int

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError('max_retries must be >= 0')
        if self.base_delay_ms < 0 or self.max_delay_ms < self.base_delay_ms:
            raise ValueError('require 0 <= base_delay_ms <= max_delay_ms')

    def delay_ms(self, attempt: int) -> int:
        """Delay before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError('attempt must be >= 1')
        exponent = min(attempt - 1, 32)
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0


RETRY_POLICIES: Mapping[str, RetryPolicy] = MappingProxyType(
    {
        'github': RetryPolicy(max_retries=4, base_delay_ms=5_000, max_delay_ms=60_000),
        'supabase': RetryPolicy(max_retries=6, base_delay_ms=2_000, max_delay_ms=20_000),
        'vercel': RetryPolicy(max_retries=8, base_delay_ms=10_000, max_delay_ms=90_000),
        'eleven': RetryPolicy(max_retries=5, base_delay_ms=3_000, max_delay_ms=30_000),
        'stripe': RetryPolicy(max_retries=5, base_delay_ms=2_000, max_delay_ms=30_000),
    }
)

# Used for INIT, which has no external system.
DEFAULT_POLICY = RetryPolicy(max_retries=3, base_delay_ms=1_000, max_delay_ms=10_000)


def policy_for_system(
    system: str | None,
    policies: Mapping[str, RetryPolicy] = RETRY_POLICIES,
) -> RetryPolicy:
    if system is None:
        return DEFAULT_POLICY
    try:
        return policies[system]
    except KeyError:
        raise KeyError(f'no retry policy for system {system!r}') from None


def policy_for_state(
    state: str,
    policies: Mapping[str, RetryPolicy] = RETRY_POLICIES,
) -> RetryPolicy:
    return policy_for_system(system_for_state(state), policies)


class RetryBook:
    """Reads and persists ``retry_count`` for a run's current state."""

    def __init__(
        self,
        store: ProvisionStore,
        policies: Mapping[str, RetryPolicy] = RETRY_POLICIES,
    ) -> None:
        self._store = store
        self._policies = policies

    def policy_for(self, run: ProvisionRun) -> RetryPolicy:
        return policy_for_state(run.state, self._policies)

    async def should_retry(self, project_slug: str) -> bool:
        """True while the run's retry count is below its system's budget."""
        run = await self._require(project_slug)
        return run.retry_count < self.policy_for(run).max_retries

    async def record_retry(
        self,
        project_slug: str,
        *,
        now: datetime | None = None,
    ) -> ProvisionRun:
        """Increment and persist ``retry_count`` and ``last_retry_at``."""
        run = await self._require(project_slug)
        at = now or datetime.now(timezone.utc)
        return await self._store.update(
            project_slug,
            {
                'metadata': {
                    RETRY_COUNT_KEY: run.retry_count + 1,
                    LAST_RETRY_AT_KEY: at.isoformat(),
                },
            },
        )

    def next_delay_seconds(self, run: ProvisionRun) -> float:
        """Backoff before the attempt following ``run``'s latest retry."""
        return self.policy_for(run).delay_seconds(max(run.retry_count, 1))

    async def _require(self, project_slug: str) -> ProvisionRun:
        run = await self._store.get(project_slug)
        if run is None:
            raise RunNotFound(project_slug)
        return run
