"""Shared HTTP plumbing for provider clients.

Every provider client talks to its API through ``ProviderHTTP``, which maps
transport failures and HTTP status codes onto the provisioning failure
taxonomy:

  - timeouts, connection errors, 408/425/429 and 5xx -> TransientProviderError
  - any other 4xx -> ProviderRejected
  - missing credentials -> ConfigurationError (before any request is sent)

404 is returned to the caller as a response when ``allow_not_found`` is set,
so create-or-fetch actions can look a resource up before creating it.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..provisioning.errors import (
    ConfigurationError,
    ProviderRejected,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})

_DEFAULT_TIMEOUT_SECONDS = 30.0


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in _TRANSIENT_STATUS_CODES


def error_message(resp: httpx.Response) -> str:
    """Best-effort human-readable message from a provider error body."""
    body = resp.text
    message = body[:200] if body else f"HTTP {resp.status_code}"
    try:
        payload = resp.json()
    except ValueError:
        return message
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("code") or message)
        if isinstance(err, str):
            return err
        for key in ("message", "detail", "msg"):
            if payload.get(key):
                return str(payload[key])
    return message


class ProviderHTTP:
    """Authenticated request helper bound to one provider's base URL."""

    def __init__(
        self,
        *,
        system: str,
        base_url: str,
        credential: str,
        credential_name: str,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.system = system
        self._base_url = base_url.rstrip("/")
        self._credential = credential
        self._credential_name = credential_name
        self._client = http_client
        self._timeout = float(timeout_seconds)

    @property
    def credential(self) -> str:
        """Return the credential or raise ConfigurationError if unset."""
        if not self._credential:
            raise ConfigurationError(
                f"{self._credential_name} is not configured",
                system=self.system,
            )
        return self._credential

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}{path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str],
        json: Any | None = None,
        data: Any | None = None,
        params: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
        allow_statuses: frozenset[int] = frozenset(),
    ) -> httpx.Response:
        """Send a request and classify failures.

        Raises:
            TransientProviderError: network failure or retryable status.
            ProviderRejected: any other 4xx (404 only without allow_not_found).
        """
        try:
            resp = await self._client.request(
                method,
                self.url(path),
                headers=dict(headers),
                json=json,
                data=data,
                params=params,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                f"{method} {path} timed out", system=self.system,
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"{method} {path} failed: {exc}", system=self.system,
            ) from exc

        status = resp.status_code
        if status < 400 or status in allow_statuses:
            return resp
        if status == 404 and allow_not_found:
            return resp

        message = f"{method} {path} returned {status}: {error_message(resp)}"
        if is_transient_status(status):
            logger.warning("%s transient failure: %s", self.system, message)
            raise TransientProviderError(
                message, system=self.system, status_code=status,
            )
        raise ProviderRejected(message, system=self.system, status_code=status)

    @staticmethod
    def json_body(resp: httpx.Response, *, system: str) -> Any:
        """Decode a JSON body; an unparseable success body is transient."""
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientProviderError(
                f"invalid JSON from {resp.request.url.path}", system=system,
            ) from exc
