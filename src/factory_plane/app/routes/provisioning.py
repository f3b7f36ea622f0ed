"""Provisioning start/resume/status/delete API.

  POST /api/provision/start            -> create (or reuse) and run in background
  POST /api/provision/resume           -> run the orchestrator once, synchronously
  GET  /api/provision/status           -> run snapshot, no side effects
  POST /api/provision/delete           -> remove the run record
  GET  /api/provision/stale            -> runs idle past the stale threshold
  GET  /api/provision/voice-session    -> signed session URL for the voice agent
  GET  /api/cron/provision             -> re-dispatch every in-flight run

Error bodies are ``{'error': <code>, 'detail': <message>}``.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..provisioning.errors import ProvisioningError
from ..provisioning.service import (
    InvalidProjectSlug,
    ProvisioningService,
    RunStateConflict,
    VoiceAgentNotReady,
)
from ..provisioning.store import RunNotFound

logger = logging.getLogger(__name__)


# ── Request schemas ───────────────────────────────────────────────────


class ProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_slug: str = Field(alias='projectSlug', min_length=1)


# ── Response helpers ──────────────────────────────────────────────────


def _error(status_code: int, code: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={'error': code, 'detail': detail},
    )


def _not_found(project_slug: str) -> JSONResponse:
    return _error(404, 'run_not_found', f'No provision run for {project_slug!r}.')


def _cron_authorized(request: Request, cron_secret: str) -> bool:
    if not cron_secret:
        return True
    header = request.headers.get('authorization', '')
    return hmac.compare_digest(header, f'Bearer {cron_secret}')


# ── Route factory ─────────────────────────────────────────────────────


def create_provisioning_router(
    service: ProvisioningService,
    *,
    cron_secret: str = '',
) -> APIRouter:
    """Create the provisioning router.

    Args:
        service: Provisioning entry points.
        cron_secret: Bearer token required by the cron sweep. Empty
            disables the check (local development only).
    """
    router = APIRouter(tags=['provisioning'])

    @router.post('/api/provision/start', status_code=202)
    async def start_provisioning(body: ProjectRequest):
        """Create a run and orchestrate it in the background.

        Returns immediately; poll the status endpoint for progress.
        """
        try:
            result = await service.start(body.project_slug)
        except InvalidProjectSlug as exc:
            return _error(400, 'invalid_project_slug', str(exc))
        except RunStateConflict as exc:
            return _error(409, 'run_exists', str(exc))
        except RunNotFound:
            return _not_found(body.project_slug)
        return JSONResponse(
            status_code=202,
            content={**result.run.snapshot(), 'created': result.created},
        )

    @router.post('/api/provision/resume')
    async def resume_provisioning(body: ProjectRequest):
        try:
            outcome = await service.resume(body.project_slug)
        except InvalidProjectSlug as exc:
            return _error(400, 'invalid_project_slug', str(exc))
        except RunNotFound:
            return _not_found(body.project_slug)
        if outcome.run is None:
            return _not_found(body.project_slug)
        return {
            **outcome.run.snapshot(),
            'outcome': outcome.outcome,
            'reason': outcome.reason,
        }

    @router.get('/api/provision/status')
    async def provisioning_status(project_slug: str = Query(alias='projectSlug')):
        try:
            run = await service.status(project_slug)
        except InvalidProjectSlug as exc:
            return _error(400, 'invalid_project_slug', str(exc))
        except RunNotFound:
            return _not_found(project_slug)
        return run.snapshot()

    @router.post('/api/provision/delete')
    async def delete_provisioning(body: ProjectRequest):
        """Remove the run record. External resources are left in place."""
        try:
            await service.delete(body.project_slug)
        except InvalidProjectSlug as exc:
            return _error(400, 'invalid_project_slug', str(exc))
        except RunNotFound:
            return _not_found(body.project_slug)
        return {'projectSlug': body.project_slug, 'deleted': True}

    @router.get('/api/provision/stale')
    async def stale_runs():
        report = await service.stale_report()
        return report.to_dict()

    @router.get('/api/provision/voice-session')
    async def voice_session(project_slug: str = Query(alias='projectSlug')):
        try:
            signed_url = await service.voice_session_url(project_slug)
        except InvalidProjectSlug as exc:
            return _error(400, 'invalid_project_slug', str(exc))
        except RunNotFound:
            return _not_found(project_slug)
        except VoiceAgentNotReady as exc:
            return _error(409, 'voice_agent_not_ready', str(exc))
        except ProvisioningError as exc:
            logger.warning('Signed URL request failed for %s: %s', project_slug, exc)
            return _error(502, exc.code, str(exc))
        return {'projectSlug': project_slug, 'signedUrl': signed_url}

    @router.get('/api/cron/provision')
    async def cron_provision(request: Request):
        if not _cron_authorized(request, cron_secret):
            return _error(401, 'unauthorized', 'Invalid or missing cron secret.')
        dispatched = await service.sweep_active_runs()
        return {'dispatched': dispatched, 'count': len(dispatched)}

    return router
