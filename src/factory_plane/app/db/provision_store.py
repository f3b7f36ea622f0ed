"""Supabase-backed provision store.

Implements the ``ProvisionStore`` protocol against the ``provision_runs``
table of the control database::

    create table if not exists provision_runs (
      project_slug text primary key,
      state text not null default 'INIT',
      metadata jsonb not null default '{}',
      error text,
      failed_state text,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    );

The primary key on ``project_slug`` makes ``create`` the serialization
point. ``update`` is a read-merge-write guarded on ``updated_at``, so two
writers racing on one slug cannot silently drop each other's metadata:
the loser re-reads and merges again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ..provisioning.models import ProvisionRun, RunMetadata
from ..provisioning.states import INIT
from ..provisioning.store import RunAlreadyExists, RunNotFound, apply_update
from .errors import SupabaseConflictError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

TABLE = "provision_runs"

_UPDATE_ATTEMPTS = 3


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def run_from_row(row: Mapping[str, Any]) -> ProvisionRun:
    return ProvisionRun(
        project_slug=row["project_slug"],
        state=row.get("state") or INIT,
        metadata=RunMetadata.from_dict(row.get("metadata")),
        error=row.get("error"),
        failed_state=row.get("failed_state"),
        created_at=_parse_ts(row.get("created_at")),
        updated_at=_parse_ts(row.get("updated_at")),
    )


def run_to_row(run: ProvisionRun) -> dict[str, Any]:
    return {
        "project_slug": run.project_slug,
        "state": run.state,
        "metadata": run.metadata.to_dict(),
        "error": run.error,
        "failed_state": run.failed_state,
        "created_at": run.created_at.isoformat(),
        "updated_at": run.updated_at.isoformat(),
    }


class SupabaseProvisionStore:
    """Provision run CRUD backed by Supabase PostgREST."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def create(self, project_slug: str) -> ProvisionRun:
        run = ProvisionRun(project_slug=project_slug)
        try:
            rows = await self._client.insert(TABLE, run_to_row(run))
        except SupabaseConflictError:
            raise RunAlreadyExists(project_slug) from None
        return run_from_row(rows[0]) if rows else run

    async def get(self, project_slug: str) -> ProvisionRun | None:
        rows = await self._client.select(
            TABLE, filters={"project_slug": ("eq", project_slug)}, limit=1,
        )
        return run_from_row(rows[0]) if rows else None

    async def update(
        self, project_slug: str, fields: Mapping[str, Any],
    ) -> ProvisionRun:
        for _ in range(_UPDATE_ATTEMPTS):
            current = await self.get(project_slug)
            if current is None:
                raise RunNotFound(project_slug)
            updated = apply_update(current, fields)
            row = run_to_row(updated)
            del row["project_slug"], row["created_at"]
            rows = await self._client.update(
                TABLE,
                filters={
                    "project_slug": ("eq", project_slug),
                    "updated_at": ("eq", current.updated_at.isoformat()),
                },
                data=row,
            )
            if rows:
                return run_from_row(rows[0])
            logger.info("Concurrent update on run %s; re-reading", project_slug)
        raise SupabaseConflictError(
            status_code=409,
            message=f"run {project_slug!r} kept changing during update",
        )

    async def delete(self, project_slug: str) -> bool:
        rows = await self._client.delete(
            TABLE, filters={"project_slug": ("eq", project_slug)},
        )
        return bool(rows)

    async def list_runs(
        self, states: Iterable[str] | None = None,
    ) -> list[ProvisionRun]:
        filters = {"state": ("in", sorted(states))} if states is not None else None
        rows = await self._client.select(TABLE, filters=filters, order="created_at.asc")
        return [run_from_row(row) for row in rows]
