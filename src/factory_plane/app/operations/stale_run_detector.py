"""Stale provision-run detector.

Reports runs that nobody has touched for longer than a threshold: runs
left in a non-terminal state whose orchestration stopped, and FAILED runs
nobody resumed or deleted. Reclaiming them is an operator decision; the
detector never mutates a run and never reaches out to providers.

Usage::

    detector = StaleRunDetector(threshold=timedelta(hours=72))
    report = detector.sweep(runs, now=datetime.now(timezone.utc))
    # report.stale lists runs an operator should resume or delete
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence

from ..provisioning.models import ProvisionRun
from ..provisioning.states import COMPLETE

logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD = timedelta(hours=72)


@dataclass(frozen=True, slots=True)
class StaleRunEntry:
    run: ProvisionRun
    idle_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            'projectSlug': self.run.project_slug,
            'state': self.run.state,
            'failedState': self.run.failed_state,
            'error': self.run.error,
            'updatedAt': self.run.updated_at.isoformat(),
            'idleHours': round(self.idle_seconds / 3600, 1),
        }


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Result of a stale-run sweep.

    Attributes:
        stale: Runs idle past the threshold (non-terminal or FAILED).
        healthy: Non-COMPLETE runs touched within the threshold.
        skipped: COMPLETE runs, which are never stale.
        sweep_ts: Timestamp of the sweep.
    """

    stale: tuple[StaleRunEntry, ...]
    healthy: tuple[ProvisionRun, ...]
    skipped: tuple[ProvisionRun, ...]
    sweep_ts: datetime

    @property
    def stale_count(self) -> int:
        return len(self.stale)

    @property
    def total_scanned(self) -> int:
        return len(self.stale) + len(self.healthy) + len(self.skipped)

    @property
    def stale_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.stale:
            state = entry.run.state
            counts[state] = counts.get(state, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            'sweepTs': self.sweep_ts.isoformat(),
            'totalScanned': self.total_scanned,
            'staleCount': self.stale_count,
            'staleByState': self.stale_by_state,
            'stale': [entry.to_dict() for entry in self.stale],
        }


class StaleRunDetector:
    def __init__(self, threshold: timedelta = DEFAULT_STALE_THRESHOLD) -> None:
        if threshold <= timedelta(0):
            raise ValueError('threshold must be positive')
        self._threshold = threshold

    def sweep(
        self,
        runs: Sequence[ProvisionRun],
        *,
        now: datetime,
    ) -> SweepReport:
        """Classify ``runs``; ``now`` must be timezone-aware."""
        stale: list[StaleRunEntry] = []
        healthy: list[ProvisionRun] = []
        skipped: list[ProvisionRun] = []

        for run in runs:
            if run.state == COMPLETE:
                skipped.append(run)
                continue
            idle = now - run.updated_at
            if idle > self._threshold:
                stale.append(StaleRunEntry(run=run, idle_seconds=idle.total_seconds()))
            else:
                healthy.append(run)

        if stale:
            logger.warning(
                'Stale provision runs awaiting operator action: %s',
                ', '.join(entry.run.project_slug for entry in stale),
            )
        return SweepReport(
            stale=tuple(stale),
            healthy=tuple(healthy),
            skipped=tuple(skipped),
            sweep_ts=now,
        )
