"""Provision run record and per-system metadata.

``RunMetadata`` keeps one mapping per external system so that a later step
can never clobber what an earlier step recorded: merges are
first-write-wins per key within a system's mapping. The retry bookkeeping
(``retry_count``, ``last_retry_at``) lives beside the system mappings and
is the only part that is rewritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from .states import FAILED, INIT, SYSTEMS, describe

logger = logging.getLogger(__name__)

RETRY_COUNT_KEY = 'retry_count'
LAST_RETRY_AT_KEY = 'last_retry_at'


@dataclass(frozen=True, slots=True)
class RunMetadata:
    """Accumulated artifacts for one run, keyed by system name."""

    systems: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    retry_count: int = 0
    last_retry_at: str | None = None

    def system(self, name: str) -> Mapping[str, Any]:
        return self.systems.get(name, {})

    def merged(self, updates: Mapping[str, Mapping[str, Any]]) -> RunMetadata:
        """Return a copy with ``updates`` added, never replacing existing keys."""
        systems = {name: dict(values) for name, values in self.systems.items()}
        for name, values in updates.items():
            if name not in SYSTEMS:
                raise ValueError(f'unknown metadata system: {name!r}')
            current = systems.setdefault(name, {})
            for key, value in values.items():
                if key not in current:
                    current[key] = value
                elif current[key] != value:
                    logger.warning(
                        'Ignoring overwrite of metadata %s.%s',
                        name,
                        key,
                    )
        return replace(self, systems=systems)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            name: dict(values) for name, values in self.systems.items()
        }
        payload[RETRY_COUNT_KEY] = self.retry_count
        payload[LAST_RETRY_AT_KEY] = self.last_retry_at
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> RunMetadata:
        payload = payload or {}
        systems = {
            name: dict(payload[name])
            for name in SYSTEMS
            if isinstance(payload.get(name), Mapping)
        }
        return cls(
            systems=systems,
            retry_count=int(payload.get(RETRY_COUNT_KEY) or 0),
            last_retry_at=payload.get(LAST_RETRY_AT_KEY),
        )


@dataclass(frozen=True, slots=True)
class ProvisionRun:
    """One tenant's provisioning run, keyed by ``project_slug``."""

    project_slug: str
    state: str = INIT
    metadata: RunMetadata = field(default_factory=RunMetadata)
    error: str | None = None
    failed_state: str | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def retry_count(self) -> int:
        return self.metadata.retry_count

    def snapshot(self) -> dict[str, Any]:
        """Status payload for API consumers."""
        label = describe(self.state)
        return {
            'projectSlug': self.project_slug,
            'state': self.state,
            'title': label.title,
            'description': label.description,
            'progress': label.progress,
            'metadata': self.metadata.to_dict(),
            'error': self.error if self.state == FAILED else None,
            'failedState': self.failed_state if self.state == FAILED else None,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }
