"""Provision store contract and in-memory implementation.

The store is the only shared mutable resource in provisioning. ``create``
is the serialization point: it refuses to overwrite an existing run, so
two concurrent starts for one slug cannot both win. ``update`` merges
``metadata`` key-by-key (see ``RunMetadata.merged``) so a lost update at
worst re-runs idempotent work.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Protocol

from .models import LAST_RETRY_AT_KEY, RETRY_COUNT_KEY, ProvisionRun, RunMetadata
from .states import PROVISIONING_SEQUENCE, SYSTEMS, TERMINAL_STATES

UPDATABLE_FIELDS = frozenset({'state', 'error', 'failed_state', 'metadata'})

# ── Error types ──────────────────────────────────────────────────────


class RunAlreadyExists(Exception):
    """Raised when a run already exists for a project slug."""

    def __init__(self, project_slug: str) -> None:
        self.project_slug = project_slug
        super().__init__(f'provision run already exists for {project_slug!r}')


class RunNotFound(LookupError):
    """Raised when updating a run that does not exist."""

    def __init__(self, project_slug: str) -> None:
        self.project_slug = project_slug
        super().__init__(f'no provision run for {project_slug!r}')


# ── Repository protocol ─────────────────────────────────────────────


class ProvisionStore(Protocol):
    """Durable storage for provision runs keyed by project slug.

    Implementations: InMemoryProvisionStore (local/testing),
    SupabaseProvisionStore (production).
    """

    async def create(self, project_slug: str) -> ProvisionRun:
        """Insert a run at INIT. Raises RunAlreadyExists."""
        ...

    async def get(self, project_slug: str) -> ProvisionRun | None:
        ...

    async def update(
        self, project_slug: str, fields: Mapping[str, Any],
    ) -> ProvisionRun:
        """Merge ``fields`` into the run and bump ``updated_at``.

        Raises RunNotFound.
        """
        ...

    async def delete(self, project_slug: str) -> bool:
        """Remove the run record. Returns False if nothing was deleted."""
        ...

    async def list_runs(
        self, states: Iterable[str] | None = None,
    ) -> list[ProvisionRun]:
        """List runs, optionally restricted to ``states``."""
        ...


# ── Merge helper shared by implementations ─────────────────────────


def apply_update(
    run: ProvisionRun,
    fields: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ProvisionRun:
    """Return ``run`` with ``fields`` merged in.

    ``metadata`` may contain per-system mappings (merged first-write-wins)
    and the retry bookkeeping keys (replaced).
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f'unsupported run fields: {sorted(unknown)}')

    state = fields.get('state', run.state)
    if state not in PROVISIONING_SEQUENCE and state not in TERMINAL_STATES:
        raise ValueError(f'unknown state: {state!r}')

    metadata = run.metadata
    patch = fields.get('metadata')
    if patch:
        stray = set(patch) - set(SYSTEMS) - {RETRY_COUNT_KEY, LAST_RETRY_AT_KEY}
        if stray:
            raise ValueError(f'unsupported metadata keys: {sorted(stray)}')
        metadata = metadata.merged(
            {name: values for name, values in patch.items() if name in SYSTEMS}
        )
        if RETRY_COUNT_KEY in patch:
            metadata = replace(metadata, retry_count=int(patch[RETRY_COUNT_KEY]))
        if LAST_RETRY_AT_KEY in patch:
            metadata = replace(metadata, last_retry_at=patch[LAST_RETRY_AT_KEY])

    return replace(
        run,
        state=state,
        error=fields.get('error', run.error),
        failed_state=fields.get('failed_state', run.failed_state),
        metadata=metadata,
        updated_at=now or datetime.now(timezone.utc),
    )


# ── In-memory implementation ────────────────────────────────────────


class InMemoryProvisionStore:
    """In-memory provision store for local development and tests.

    Mirrors the unique index on ``project_slug``.
    """

    def __init__(self) -> None:
        self._runs: dict[str, ProvisionRun] = {}

    async def create(self, project_slug: str) -> ProvisionRun:
        if project_slug in self._runs:
            raise RunAlreadyExists(project_slug)
        run = ProvisionRun(project_slug=project_slug, metadata=RunMetadata())
        self._runs[project_slug] = run
        return run

    async def get(self, project_slug: str) -> ProvisionRun | None:
        return self._runs.get(project_slug)

    async def update(
        self, project_slug: str, fields: Mapping[str, Any],
    ) -> ProvisionRun:
        run = self._runs.get(project_slug)
        if run is None:
            raise RunNotFound(project_slug)
        updated = apply_update(run, fields)
        self._runs[project_slug] = updated
        return updated

    async def delete(self, project_slug: str) -> bool:
        return self._runs.pop(project_slug, None) is not None

    async def list_runs(
        self, states: Iterable[str] | None = None,
    ) -> list[ProvisionRun]:
        wanted = frozenset(states) if states is not None else None
        runs = [
            run for run in self._runs.values()
            if wanted is None or run.state in wanted
        ]
        return sorted(runs, key=lambda r: r.created_at)
