"""Failure alert routing and delivery.

``resolve_alert_target`` is a pure function of the project slug: slugs
starting with ``demo-`` route to the development destinations, everything
else to operations. ``AlertRouter.send_alert`` delivers to whichever of the
chat webhook and email address are configured. Delivery is best-effort:
failures are logged and counted, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping

import httpx

from ..observability.metrics import ALERTS_SENT_TOTAL
from ..settings import FactorySettings

logger = logging.getLogger(__name__)

DEMO_PREFIX = 'demo-'
RESEND_EMAILS_URL = 'https://api.resend.com/emails'


@dataclass(frozen=True, slots=True)
class AlertTarget:
    chat_webhook_url: str | None = None
    email_address: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.chat_webhook_url and not self.email_address


@dataclass(frozen=True, slots=True)
class AlertPayload:
    project_slug: str
    state: str
    error: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


def resolve_alert_target(
    project_slug: str,
    settings: FactorySettings,
) -> AlertTarget:
    """Map a slug to its alert destinations by prefix convention."""
    if project_slug.startswith(DEMO_PREFIX):
        return AlertTarget(
            chat_webhook_url=settings.slack_webhook_dev or None,
            email_address=settings.alert_email_dev or None,
        )
    return AlertTarget(
        chat_webhook_url=settings.slack_webhook_ops or None,
        email_address=settings.alert_email_ops or None,
    )


def format_alert(payload: AlertPayload) -> str:
    lines = [
        f'Provisioning failed for {payload.project_slug}',
        f'State: {payload.state}',
        f'Error: {payload.error}',
    ]
    completed = sorted(
        name for name, value in payload.metadata.items()
        if isinstance(value, Mapping) and value
    )
    if completed:
        lines.append(f'Provisioned so far: {", ".join(completed)}')
    return '\n'.join(lines)


class AlertRouter:
    """Dispatches failure notifications to chat and email."""

    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._timeout = timeout_seconds

    def resolve(self, project_slug: str) -> AlertTarget:
        return resolve_alert_target(project_slug, self._settings)

    async def send_alert(self, payload: AlertPayload) -> list[str]:
        """Deliver ``payload``; return the channels that accepted it."""
        target = self.resolve(payload.project_slug)
        if target.is_empty:
            logger.info(
                'No alert destination configured for %s', payload.project_slug,
            )
            return []

        text = format_alert(payload)
        delivered: list[str] = []
        if target.chat_webhook_url:
            if await self._deliver('chat', self._post_chat(target.chat_webhook_url, text)):
                delivered.append('chat')
        if target.email_address:
            if not self._settings.resend_api_key:
                logger.warning(
                    'Alert email for %s skipped: RESEND_API_KEY not configured',
                    payload.project_slug,
                )
                ALERTS_SENT_TOTAL.labels(channel='email', outcome='skipped').inc()
            elif await self._deliver(
                'email', self._post_email(target.email_address, payload, text),
            ):
                delivered.append('email')
        return delivered

    async def _deliver(
        self, channel: str, send: Awaitable[httpx.Response],
    ) -> bool:
        try:
            resp = await send
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            logger.warning('Alert delivery via %s failed: %s', channel, exc)
            ALERTS_SENT_TOTAL.labels(channel=channel, outcome='error').inc()
            return False
        if resp.status_code >= 400:
            logger.warning(
                'Alert delivery via %s rejected with %d', channel, resp.status_code,
            )
            ALERTS_SENT_TOTAL.labels(channel=channel, outcome='error').inc()
            return False
        ALERTS_SENT_TOTAL.labels(channel=channel, outcome='sent').inc()
        return True

    async def _post_chat(self, url: str, text: str) -> httpx.Response:
        return await self._client.post(url, json={'text': text}, timeout=self._timeout)

    async def _post_email(
        self, address: str, payload: AlertPayload, text: str,
    ) -> httpx.Response:
        return await self._client.post(
            RESEND_EMAILS_URL,
            headers={'Authorization': f'Bearer {self._settings.resend_api_key}'},
            json={
                'from': self._settings.alert_email_from,
                'to': [address],
                'subject': f'[provisioning] {payload.project_slug} failed at {payload.state}',
                'text': text,
            },
            timeout=self._timeout,
        )
