"""Provisioning service: the start/resume/status/delete entry points.

Start creates the run (the store's unique slug is the serialization
point) and detaches orchestration into a background task; the store is
the only channel through which that task reports progress. Within one
process at most one orchestration runs per slug: resume and the cron
sweep defer to a task that is already running.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Coroutine

from ..observability.metrics import PROVISION_TRANSITIONS_TOTAL
from ..operations.stale_run_detector import StaleRunDetector, SweepReport
from .capabilities import VoiceAgentProvider
from .models import ProvisionRun
from .orchestrator import OUTCOME_DELETED, ProvisioningOrchestrator, RunOutcome
from .states import ACTIVE_STATES, INIT, TERMINAL_STATES
from .store import ProvisionStore, RunAlreadyExists, RunNotFound

logger = logging.getLogger(__name__)

OUTCOME_RUNNING = 'running'

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 63
_SLUG_RE = re.compile(r'^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$')
_SLUG_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SLUG_SUFFIX_LENGTH = 4

# ── Error types ──────────────────────────────────────────────────────


class InvalidProjectSlug(ValueError):
    def __init__(self, project_slug: str) -> None:
        self.project_slug = project_slug
        super().__init__(
            f'invalid project slug {project_slug!r}: use {SLUG_MIN_LENGTH}-'
            f'{SLUG_MAX_LENGTH} lowercase letters, digits or hyphens, '
            'starting and ending with a letter or digit'
        )


class RunStateConflict(Exception):
    """Start was called for a run that already finished or failed."""

    def __init__(self, project_slug: str, state: str) -> None:
        self.project_slug = project_slug
        self.state = state
        super().__init__(
            f'provision run for {project_slug!r} is {state}; '
            'resume or delete it instead of starting again'
        )


class VoiceAgentNotReady(Exception):
    def __init__(self, project_slug: str) -> None:
        self.project_slug = project_slug
        super().__init__(f'no voice agent provisioned yet for {project_slug!r}')


# ── Slugs ────────────────────────────────────────────────────────────


def validate_project_slug(project_slug: str) -> str:
    """Return ``project_slug`` unchanged or raise InvalidProjectSlug."""
    if (
        not isinstance(project_slug, str)
        or not SLUG_MIN_LENGTH <= len(project_slug) <= SLUG_MAX_LENGTH
        or not _SLUG_RE.match(project_slug)
    ):
        raise InvalidProjectSlug(str(project_slug))
    return project_slug


def generate_project_slug(name: str) -> str:
    """Derive a unique-enough slug from a display name.

    ``"Acme Research, Inc."`` -> ``"acme-research-inc-x7k2"``.
    """
    base = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    base = base[: SLUG_MAX_LENGTH - _SLUG_SUFFIX_LENGTH - 1].rstrip('-') or 'platform'
    suffix = ''.join(
        secrets.choice(_SLUG_SUFFIX_ALPHABET) for _ in range(_SLUG_SUFFIX_LENGTH)
    )
    return f'{base}-{suffix}'


# ── Service ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class StartResult:
    """``created`` is False when an in-flight run was reused."""

    run: ProvisionRun
    created: bool


class ProvisioningService:
    def __init__(
        self,
        *,
        store: ProvisionStore,
        orchestrator: ProvisioningOrchestrator,
        voice: VoiceAgentProvider,
        stale_detector: StaleRunDetector,
        resume_wait_polls: int = 0,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._voice = voice
        self._stale_detector = stale_detector
        self._resume_wait_polls = resume_wait_polls
        self._tasks: dict[str, asyncio.Task[RunOutcome | None]] = {}

    # ── Entry points ────────────────────────────────────────────────

    async def start(self, project_slug: str) -> StartResult:
        """Create the run if absent and orchestrate it in the background.

        Raises:
            InvalidProjectSlug: malformed slug.
            RunStateConflict: the run exists and is COMPLETE or FAILED.
        """
        validate_project_slug(project_slug)
        try:
            run = await self._store.create(project_slug)
        except RunAlreadyExists:
            existing = await self._store.get(project_slug)
            if existing is None:
                raise RunNotFound(project_slug) from None
            if existing.state in TERMINAL_STATES:
                raise RunStateConflict(project_slug, existing.state) from None
            logger.info('Start for %s reuses run at %s', project_slug, existing.state)
            self._spawn(project_slug)
            return StartResult(run=existing, created=False)

        PROVISION_TRANSITIONS_TOTAL.labels(state=INIT).inc()
        logger.info('Provision run created for %s', project_slug)
        self._spawn(project_slug)
        return StartResult(run=run, created=True)

    async def resume(self, project_slug: str) -> RunOutcome:
        """Run the orchestrator once for an existing run and wait for it.

        The invocation is tracked like a background task, so a sweep, a
        start or another resume defers to it and delete cancels it.

        Raises:
            InvalidProjectSlug: malformed slug.
            RunNotFound: no run for the slug.
        """
        run = await self.status(project_slug)
        if self.is_running(project_slug):
            logger.info('Resume for %s deferred to running orchestration', project_slug)
            return RunOutcome(OUTCOME_RUNNING, run)
        task = self._track(
            project_slug,
            self._orchestrator.run(project_slug, wait_polls=self._resume_wait_polls),
        )
        await asyncio.wait({task})
        if task.cancelled():
            return RunOutcome(OUTCOME_DELETED, None)
        return task.result()

    async def status(self, project_slug: str) -> ProvisionRun:
        validate_project_slug(project_slug)
        run = await self._store.get(project_slug)
        if run is None:
            raise RunNotFound(project_slug)
        return run

    async def delete(self, project_slug: str) -> None:
        """Remove the run record and stop any orchestration of it here.

        External resources are left in place.
        """
        validate_project_slug(project_slug)
        task = self._tasks.pop(project_slug, None)
        if task is not None and not task.done():
            task.cancel()
        if not await self._store.delete(project_slug):
            raise RunNotFound(project_slug)
        logger.info('Provision run deleted for %s', project_slug)

    async def sweep_active_runs(self) -> list[str]:
        """Detach orchestration for every non-terminal run; return their slugs.

        FAILED runs are left for an operator to resume.
        """
        dispatched: list[str] = []
        for run in await self._store.list_runs(states=ACTIVE_STATES):
            if self.is_running(run.project_slug):
                continue
            self._spawn(run.project_slug)
            dispatched.append(run.project_slug)
        logger.info('Provision sweep dispatched %d run(s)', len(dispatched))
        return dispatched

    async def stale_report(self, *, now: datetime | None = None) -> SweepReport:
        runs = await self._store.list_runs()
        return self._stale_detector.sweep(runs, now=now or datetime.now(timezone.utc))

    async def voice_session_url(self, project_slug: str) -> str:
        """Signed browser-session URL for the tenant's voice agent."""
        run = await self.status(project_slug)
        agent_id = run.metadata.system('eleven').get('agent_id')
        if not agent_id:
            raise VoiceAgentNotReady(project_slug)
        return await self._voice.get_signed_url(agent_id)

    # ── Background tasks ────────────────────────────────────────────

    def is_running(self, project_slug: str) -> bool:
        task = self._tasks.get(project_slug)
        return task is not None and not task.done()

    async def wait_for_background(self) -> list[RunOutcome | None]:
        """Await every detached orchestration (tests and shutdown)."""
        tasks = list(self._tasks.values())
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _spawn(self, project_slug: str) -> None:
        if self.is_running(project_slug):
            logger.info('Orchestration already running for %s', project_slug)
            return
        self._track(project_slug, self._run_detached(project_slug))

    def _track(
        self,
        project_slug: str,
        coro: Coroutine[Any, Any, RunOutcome | None],
    ) -> asyncio.Task[RunOutcome | None]:
        task = asyncio.create_task(coro, name=f'provision:{project_slug}')
        self._tasks[project_slug] = task
        task.add_done_callback(lambda done, slug=project_slug: self._forget(slug, done))
        return task

    def _forget(self, project_slug: str, task: asyncio.Task) -> None:
        if self._tasks.get(project_slug) is task:
            del self._tasks[project_slug]

    async def _run_detached(self, project_slug: str) -> RunOutcome | None:
        try:
            return await self._orchestrator.run(project_slug)
        except Exception:
            logger.exception('Background orchestration for %s crashed', project_slug)
            return None
