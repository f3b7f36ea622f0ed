"""Provisioning orchestrator: drives one run through the state sequence.

For the state a run is in, the orchestrator:
  1. Runs the state's create-or-fetch action and persists what it found.
  2. Polls the state's verifiers; WAIT re-checks after the system's
     backoff, FAIL is a step failure.
  3. On success resets the retry counter and advances to the next state.
  4. On a transient failure records a retry and re-attempts the same
     state after backoff while the system's budget lasts; any other
     failure, or an exhausted budget, moves the run to FAILED and sends
     exactly one alert.

The store is written after every step, so an invocation can stop at any
point (crash, WAIT checkpoint, deletion) and the next one continues from
the persisted state. Before each write the orchestrator re-reads the run;
once another writer has moved it (or deleted and recreated it) the
invocation stops with a ``superseded`` outcome instead of writing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Protocol

from ..observability.logging import project_slug_ctx
from ..observability.metrics import (
    PROVISION_FAILURES_TOTAL,
    PROVISION_RETRIES_TOTAL,
    PROVISION_TRANSITIONS_TOTAL,
)
from .actions import Step
from .alerts import AlertPayload
from .errors import (
    ProviderRejected,
    ProvisioningError,
    TransientProviderError,
    VerificationFailed,
)
from .models import LAST_RETRY_AT_KEY, RETRY_COUNT_KEY, ProvisionRun
from .retry import RETRY_POLICIES, RetryBook, RetryPolicy
from .states import (
    COMPLETE,
    FAILED,
    INIT,
    next_state,
    require_transition,
)
from .store import ProvisionStore, RunAlreadyExists, RunNotFound
from .verifiers import Verdict

logger = logging.getLogger(__name__)

OUTCOME_COMPLETE = 'complete'
OUTCOME_FAILED = 'failed'
OUTCOME_WAITING = 'waiting'
OUTCOME_NOOP = 'noop'
OUTCOME_DELETED = 'deleted'
OUTCOME_SUPERSEDED = 'superseded'

DEFAULT_WAIT_POLLS = 30

_RESET_RETRIES = {RETRY_COUNT_KEY: 0, LAST_RETRY_AT_KEY: None}


class AlertSender(Protocol):
    async def send_alert(self, payload: AlertPayload) -> list[str]:
        ...


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Where one orchestrator invocation left the run."""

    outcome: str
    run: ProvisionRun | None
    reason: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProvisioningOrchestrator:
    """Runs the state machine for one project slug per ``run`` call.

    ``wait_polls`` bounds how many WAIT re-checks one invocation performs
    before it returns a ``waiting`` outcome and leaves the run where it is.
    """

    def __init__(
        self,
        *,
        store: ProvisionStore,
        steps: Mapping[str, Step],
        alerts: AlertSender,
        policies: Mapping[str, RetryPolicy] = RETRY_POLICIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
        wait_polls: int = DEFAULT_WAIT_POLLS,
    ) -> None:
        self._store = store
        self._steps = steps
        self._alerts = alerts
        self._retries = RetryBook(store, policies)
        self._sleep = sleep
        self._clock = clock
        self._wait_polls = wait_polls

    async def run(
        self,
        project_slug: str,
        *,
        wait_polls: int | None = None,
    ) -> RunOutcome:
        polls = self._wait_polls if wait_polls is None else wait_polls
        token = project_slug_ctx.set(project_slug)
        try:
            return await self._drive(project_slug, polls)
        except RunNotFound:
            logger.warning('Run %s was deleted during orchestration; stopping', project_slug)
            return RunOutcome(OUTCOME_DELETED, None)
        finally:
            project_slug_ctx.reset(token)

    # ── Loop ────────────────────────────────────────────────────────

    async def _drive(self, project_slug: str, polls: int) -> RunOutcome:
        run = await self._load_or_create(project_slug)
        if run.state == COMPLETE:
            logger.info('Run %s already COMPLETE; nothing to do', project_slug)
            return RunOutcome(OUTCOME_NOOP, run)
        if run.state == FAILED:
            run = await self._reenter(run)

        waits = 0
        while run.state != COMPLETE:
            step = self._steps[run.state]
            try:
                attempted, waiting = await self._attempt(step, run)
            except TransientProviderError as exc:
                current = await self._owned(run)
                if current is None:
                    return await self._superseded(run)
                if not await self._retries.should_retry(project_slug):
                    return await self._fail(
                        current,
                        exc,
                        message=(
                            f'{step.system} retries exhausted after '
                            f'{current.retry_count} retries: {exc}'
                        ),
                    )
                run = await self._retries.record_retry(project_slug, now=self._clock())
                PROVISION_RETRIES_TOTAL.labels(system=step.system or 'none').inc()
                delay = self._retries.next_delay_seconds(run)
                logger.warning(
                    'Transient failure for %s at %s (retry %d/%d in %.1fs): %s',
                    project_slug,
                    run.state,
                    run.retry_count,
                    self._retries.policy_for(run).max_retries,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                continue
            except ProvisioningError as exc:
                return await self._fail(run, exc)
            except RunNotFound:
                raise
            except Exception as exc:
                logger.exception('Unexpected error for %s at %s', project_slug, run.state)
                return await self._fail(
                    run,
                    ProviderRejected(f'unexpected error: {exc}', system=step.system),
                )

            if attempted is None:
                return await self._superseded(run)
            run = attempted

            if waiting is not None:
                if waits >= polls:
                    logger.info(
                        'Run %s waiting at %s: %s', project_slug, run.state, waiting,
                    )
                    return RunOutcome(OUTCOME_WAITING, run, waiting)
                waits += 1
                await self._sleep(self._retries.policy_for(run).delay_seconds(waits))
                continue

            advanced = await self._advance(run)
            if advanced is None:
                return await self._superseded(run)
            run = advanced
            waits = 0

        logger.info('Run %s COMPLETE', project_slug)
        return RunOutcome(OUTCOME_COMPLETE, run)

    async def _attempt(
        self, step: Step, run: ProvisionRun,
    ) -> tuple[ProvisionRun | None, str | None]:
        """Run one action + verification pass.

        Returns the refreshed run (None once another writer has moved it)
        and a wait reason (None when ready).
        """
        result = await step.action(run)
        if result.updates:
            if await self._owned(run) is None:
                return None, None
            run = await self._store.update(
                run.project_slug, {'metadata': dict(result.updates)},
            )
        if result.not_ready:
            return run, result.not_ready
        for verifier in step.verifiers:
            verification = await verifier.verify(run.metadata)
            if verification.verdict is Verdict.FAIL:
                raise VerificationFailed(verification.reason, system=verifier.system)
            if verification.verdict is Verdict.WAIT:
                return run, verification.reason
        return run, None

    async def _owned(self, run: ProvisionRun) -> ProvisionRun | None:
        """Current record while it is still the run this invocation drives.

        None when another writer moved it to a different state, or when it
        was deleted and created again.
        """
        current = await self._store.get(run.project_slug)
        if current is None:
            raise RunNotFound(run.project_slug)
        if current.state != run.state or current.created_at != run.created_at:
            return None
        return current

    async def _superseded(self, run: ProvisionRun) -> RunOutcome:
        current = await self._store.get(run.project_slug)
        if current is None:
            raise RunNotFound(run.project_slug)
        logger.warning(
            'Run %s moved from %s to %s by another writer; stopping',
            run.project_slug,
            run.state,
            current.state,
        )
        return RunOutcome(OUTCOME_SUPERSEDED, current)

    # ── Transitions ─────────────────────────────────────────────────

    async def _load_or_create(self, project_slug: str) -> ProvisionRun:
        run = await self._store.get(project_slug)
        if run is not None:
            return run
        try:
            run = await self._store.create(project_slug)
        except RunAlreadyExists:
            run = await self._store.get(project_slug)
            if run is None:
                raise RunNotFound(project_slug) from None
            return run
        PROVISION_TRANSITIONS_TOTAL.labels(state=INIT).inc()
        logger.info('Run %s created at INIT', project_slug)
        return run

    async def _advance(self, run: ProvisionRun) -> ProvisionRun | None:
        target = next_state(run.state)
        require_transition(run.state, target)
        if await self._owned(run) is None:
            return None
        updated = await self._store.update(
            run.project_slug, {'state': target, 'metadata': dict(_RESET_RETRIES)},
        )
        PROVISION_TRANSITIONS_TOTAL.labels(state=target).inc()
        logger.info('Run %s advanced %s -> %s', run.project_slug, run.state, target)
        return updated

    async def _reenter(self, run: ProvisionRun) -> ProvisionRun:
        target = run.failed_state or INIT
        require_transition(FAILED, target)
        updated = await self._store.update(
            run.project_slug,
            {
                'state': target,
                'error': None,
                'failed_state': None,
                'metadata': dict(_RESET_RETRIES),
            },
        )
        PROVISION_TRANSITIONS_TOTAL.labels(state=target).inc()
        logger.info('Run %s resumed from FAILED at %s', run.project_slug, target)
        return updated

    async def _fail(
        self,
        run: ProvisionRun,
        exc: ProvisioningError,
        *,
        message: str | None = None,
    ) -> RunOutcome:
        if await self._owned(run) is None:
            return await self._superseded(run)
        failed_at = run.state
        error = message or str(exc)
        require_transition(failed_at, FAILED)
        updated = await self._store.update(
            run.project_slug,
            {'state': FAILED, 'error': error, 'failed_state': failed_at},
        )
        PROVISION_TRANSITIONS_TOTAL.labels(state=FAILED).inc()
        PROVISION_FAILURES_TOTAL.labels(state=failed_at, error_code=exc.code).inc()
        logger.warning(
            'Run %s FAILED at %s (%s): %s', run.project_slug, failed_at, exc.code, error,
        )
        await self._alerts.send_alert(
            AlertPayload(
                project_slug=run.project_slug,
                state=failed_at,
                error=error,
                metadata=updated.metadata.to_dict(),
            )
        )
        return RunOutcome(OUTCOME_FAILED, updated, error)
