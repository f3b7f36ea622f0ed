"""Platform factory FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, CORS), the
provisioning routes, and injects the provision store, provider clients
and alert sender.

Usage:
    # Local development (in-memory store and providers)
    from factory_plane.app import create_app, FactorySettings
    app = create_app(FactorySettings())

    # Non-local (Supabase store and real provider clients)
    app = create_app(FactorySettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, store=store, providers=providers, alerts=alerts)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable

import httpx
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from .db import SupabaseClient, SupabaseProvisionStore
from .observability.logging import configure_logging
from .observability.metrics import metrics_text
from .observability.middleware import MetricsMiddleware, RequestIdMiddleware
from .operations import StaleRunDetector
from .providers import (
    ElevenLabsClient,
    GitHubClient,
    SiteConfigClient,
    StripeClient,
    SupabaseManagementClient,
    VercelClient,
)
from .provisioning.actions import ProviderSet, build_steps
from .provisioning.alerts import AlertRouter
from .provisioning.orchestrator import AlertSender, ProvisioningOrchestrator
from .provisioning.service import ProvisioningService
from .provisioning.store import InMemoryProvisionStore, ProvisionStore
from .routes.provisioning import create_provisioning_router
from .settings import FactorySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for the injected store, providers and services.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    store: ProvisionStore
    providers: ProviderSet
    alerts: AlertSender
    orchestrator: ProvisioningOrchestrator
    service: ProvisioningService
    http_client: httpx.AsyncClient


def _build_inmemory_deps(
    settings: FactorySettings,
    http_client: httpx.AsyncClient,
) -> tuple[ProvisionStore, ProviderSet, AlertSender]:
    """Construct in-memory store and providers for local development."""
    from .inmemory import build_inmemory_providers

    return (
        InMemoryProvisionStore(),
        build_inmemory_providers(),
        AlertRouter(settings, http_client=http_client),
    )


def _build_provider_deps(
    settings: FactorySettings,
    http_client: httpx.AsyncClient,
) -> tuple[ProvisionStore, ProviderSet, AlertSender]:
    """Construct the Supabase store and real provider clients."""
    store = SupabaseProvisionStore(
        SupabaseClient(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            http_client=http_client,
        )
    )
    providers = ProviderSet(
        source_control=GitHubClient(
            token=settings.github_token,
            org=settings.github_org,
            template_repo=settings.github_template_repo,
            http_client=http_client,
        ),
        database=SupabaseManagementClient(
            access_token=settings.supabase_access_token,
            organization_id=settings.supabase_org_id,
            region=settings.supabase_region,
            http_client=http_client,
        ),
        hosting=VercelClient(
            token=settings.vercel_token,
            team_id=settings.vercel_team_id,
            http_client=http_client,
        ),
        voice=ElevenLabsClient(
            api_key=settings.elevenlabs_api_key,
            http_client=http_client,
        ),
        billing=StripeClient(
            secret_key=settings.stripe_secret_key,
            http_client=http_client,
        ),
        site_config=SiteConfigClient(http_client=http_client),
    )
    return store, providers, AlertRouter(settings, http_client=http_client)


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: FactorySettings | None = None,
    *,
    store: ProvisionStore | None = None,
    providers: ProviderSet | None = None,
    alerts: AlertSender | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> FastAPI:
    """Create a configured platform-factory FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        store, providers, alerts: Overrides. When None, local mode uses
            in-memory implementations and other environments build the
            Supabase store and real provider clients from ``settings``.
        http_client: Shared outbound client. When None the app creates
            one and closes it on shutdown.
        sleep: Backoff sleep used by the orchestrator (tests pass a
            recorder so retries do not wait).

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = FactorySettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Platform factory settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient()

    if settings.is_local:
        defaults = _build_inmemory_deps(settings, client)
    else:
        defaults = _build_provider_deps(settings, client)
    if store is None:
        store = defaults[0]
    if providers is None:
        providers = defaults[1]
    if alerts is None:
        alerts = defaults[2]

    orchestrator = ProvisioningOrchestrator(
        store=store,
        steps=build_steps(providers, settings),
        alerts=alerts,
        sleep=sleep or asyncio.sleep,
        wait_polls=settings.wait_polls,
    )
    service = ProvisioningService(
        store=store,
        orchestrator=orchestrator,
        voice=providers.voice,
        stale_detector=StaleRunDetector(timedelta(hours=settings.stale_run_hours)),
        resume_wait_polls=settings.resume_wait_polls,
    )
    deps = AppDependencies(
        store=store,
        providers=providers,
        alerts=alerts,
        orchestrator=orchestrator,
        service=service,
        http_client=client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("Platform factory startup (environment=%s)", settings.environment)
        try:
            yield
        finally:
            await service.aclose()
            if owns_client:
                await client.aclose()
            logger.info("Platform factory shutdown")

    app = FastAPI(
        title="Platform Factory",
        description="Provisions per-tenant platforms across external services",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (last added runs first) ─────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(
        create_provisioning_router(service, cron_secret=settings.cron_secret)
    )

    return app


# For uvicorn, use --factory flag:
#   uvicorn factory_plane.app.main:create_app --factory
# create_app() reads no environment; run_from_env() does.


def run_from_env() -> FastAPI:
    """Factory for deployments: settings come from the process environment."""
    return create_app(FactorySettings.from_env())
