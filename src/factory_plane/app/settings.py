"""Platform factory configuration settings.

FactorySettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config
without touching os.environ.

Provider credentials are not required at startup. A missing token surfaces
as a ConfigurationError on the provisioning step that needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


_DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)
_DEFAULT_GITHUB_ORG = "connexions-platforms"
_DEFAULT_TEMPLATE_REPO = "universal-interviews"
_DEFAULT_READY_FILE = "package.json"
_DEFAULT_REGION = "us-east-1"
_DEFAULT_ALERT_FROM = "alerts@platform-factory.dev"
_DEFAULT_RESOURCE_PREFIX = "cx-"


def _int_env(env: dict[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class FactorySettings:
    """Configuration for the platform-factory FastAPI application.

    All fields have defaults suitable for local development, where the
    provision store and every provider are in-memory fakes.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Provision store (Supabase PostgREST) ───────────────────────
    supabase_url: str = ""
    """Control database URL (e.g. https://xyz.supabase.co)."""

    supabase_service_role_key: str = ""
    """Service-role key for the control database. Never log this."""

    # ── Source control ─────────────────────────────────────────────
    github_token: str = ""
    github_org: str = _DEFAULT_GITHUB_ORG
    github_template_repo: str = _DEFAULT_TEMPLATE_REPO
    github_ready_file: str = _DEFAULT_READY_FILE
    """File that must be fetchable before the repository counts as ready."""

    # ── Database provider (Supabase Management API) ────────────────
    supabase_access_token: str = ""
    supabase_org_id: str = ""
    supabase_region: str = _DEFAULT_REGION

    # ── Hosting ────────────────────────────────────────────────────
    vercel_token: str = ""
    vercel_team_id: str = ""

    # ── Voice agent ────────────────────────────────────────────────
    elevenlabs_api_key: str = ""

    # ── Billing ────────────────────────────────────────────────────
    stripe_secret_key: str = ""
    stripe_default_price_id: str = ""

    # ── Alerting ───────────────────────────────────────────────────
    slack_webhook_dev: str = ""
    slack_webhook_ops: str = ""
    alert_email_dev: str = ""
    alert_email_ops: str = ""
    resend_api_key: str = ""
    alert_email_from: str = _DEFAULT_ALERT_FROM

    # ── Orchestration ──────────────────────────────────────────────
    resource_prefix: str = _DEFAULT_RESOURCE_PREFIX
    """Naming convention for every external resource: ``{prefix}{slug}``."""

    wait_polls: int = 30
    """Verifier re-checks per background invocation before checkpointing."""

    resume_wait_polls: int = 0
    """Verifier re-checks per synchronous resume request."""

    stale_run_hours: int = 72

    cron_secret: str = ""

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = _DEFAULT_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.wait_polls < 0:
            errors.append("wait_polls must be >= 0")
        if self.resume_wait_polls < 0:
            errors.append("resume_wait_polls must be >= 0")
        if self.stale_run_hours < 1:
            errors.append("stale_run_hours must be >= 1")
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
            if not self.cron_secret:
                errors.append(f"{self.environment}: cron_secret is required")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> FactorySettings:
        """Build settings from environment variables.

        Tests should construct FactorySettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else _DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            github_token=env.get("GITHUB_TOKEN", ""),
            github_org=env.get("GITHUB_ORG", "") or _DEFAULT_GITHUB_ORG,
            github_template_repo=(
                env.get("GITHUB_TEMPLATE_REPO", "") or _DEFAULT_TEMPLATE_REPO
            ),
            github_ready_file=env.get("GITHUB_READY_FILE", "") or _DEFAULT_READY_FILE,
            supabase_access_token=env.get("SUPABASE_ACCESS_TOKEN", ""),
            supabase_org_id=env.get("SUPABASE_ORG_ID", ""),
            supabase_region=env.get("SUPABASE_REGION", "") or _DEFAULT_REGION,
            vercel_token=env.get("VERCEL_TOKEN", ""),
            vercel_team_id=env.get("VERCEL_TEAM_ID", ""),
            elevenlabs_api_key=env.get("ELEVENLABS_API_KEY", ""),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", ""),
            stripe_default_price_id=env.get("STRIPE_DEFAULT_PRICE_ID", ""),
            slack_webhook_dev=env.get("SLACK_WEBHOOK_DEV", ""),
            slack_webhook_ops=env.get("SLACK_WEBHOOK_OPS", ""),
            alert_email_dev=env.get("ALERT_EMAIL_DEV", ""),
            alert_email_ops=env.get("ALERT_EMAIL_OPS", ""),
            resend_api_key=env.get("RESEND_API_KEY", ""),
            alert_email_from=env.get("ALERT_EMAIL_FROM", "") or _DEFAULT_ALERT_FROM,
            resource_prefix=env.get("RESOURCE_PREFIX", "") or _DEFAULT_RESOURCE_PREFIX,
            wait_polls=_int_env(env, "PROVISION_WAIT_POLLS", 30),
            resume_wait_polls=_int_env(
                env, "PROVISION_RESUME_WAIT_POLLS", 0,
            ),
            stale_run_hours=_int_env(env, "STALE_RUN_HOURS", 72),
            cron_secret=env.get("CRON_SECRET", ""),
            cors_origins=cors,
        )
