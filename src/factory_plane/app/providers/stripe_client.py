"""Async client for the Stripe REST API (tenant billing).

Stripe takes form-encoded bodies. Every create call carries an
``Idempotency-Key`` derived from the project slug so a retried request
returns the original object instead of creating a duplicate.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .http import ProviderHTTP

logger = logging.getLogger(__name__)

SYSTEM = "stripe"

# Subscriptions in these states are reused instead of creating a new one.
LIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "incomplete", "past_due"})


class StripeClient:
    """Create-or-fetch operations for tenant customers and subscriptions."""

    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.stripe.com",
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = ProviderHTTP(
            system=SYSTEM,
            base_url=base_url,
            credential=secret_key,
            credential_name="STRIPE_SECRET_KEY",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._http.credential}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def find_customer(self, project_slug: str) -> dict[str, Any] | None:
        resp = await self._http.request(
            "GET",
            "/v1/customers/search",
            headers=self._headers(),
            params={"query": f"metadata['project_slug']:'{project_slug}'", "limit": 1},
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        data = payload.get("data") if isinstance(payload, dict) else None
        return data[0] if data else None

    async def create_customer(self, project_slug: str) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            "/v1/customers",
            headers=self._headers(f"customer-{project_slug}"),
            data={"name": project_slug, "metadata[project_slug]": project_slug},
        )
        customer = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info("Stripe customer created: slug=%s id=%s", project_slug, customer.get("id"))
        return customer

    async def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        resp = await self._http.request(
            "GET",
            "/v1/subscriptions",
            headers=self._headers(),
            params={"customer": customer_id, "status": "all", "limit": 10},
        )
        payload = ProviderHTTP.json_body(resp, system=SYSTEM)
        data = payload.get("data") if isinstance(payload, dict) else None
        return list(data or [])

    async def create_subscription(
        self, *, customer_id: str, price_id: str, project_slug: str,
    ) -> dict[str, Any]:
        resp = await self._http.request(
            "POST",
            "/v1/subscriptions",
            headers=self._headers(f"subscription-{project_slug}"),
            data={
                "customer": customer_id,
                "items[0][price]": price_id,
                "metadata[project_slug]": project_slug,
            },
        )
        subscription = ProviderHTTP.json_body(resp, system=SYSTEM)
        logger.info(
            "Stripe subscription created: slug=%s id=%s",
            project_slug,
            subscription.get("id"),
        )
        return subscription
