"""Provisioning failure taxonomy.

Every failure raised by a provisioning step is one of four kinds:

  - ``TransientProviderError``: network errors, 5xx, rate limiting or a
    resource that is not ready yet. Retried up to the system's budget.
  - ``ProviderRejected``: a 4xx business-rule rejection (duplicate name,
    quota, invalid request). Terminal.
  - ``ConfigurationError``: a required credential or setting is missing.
    Terminal, and reported separately from provider failures.
  - ``VerificationFailed``: a verifier reported an explicit failure
    (e.g. the hosting build errored). Terminal.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for classified provisioning step failures."""

    code = 'provisioning_error'

    def __init__(
        self,
        message: str,
        *,
        system: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.system = system
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f'[{self.system}] ' if self.system else ''
        return f'{prefix}{self.message}'


class TransientProviderError(ProvisioningError):
    """Retryable provider failure."""

    code = 'transient_provider_error'


class ProviderRejected(ProvisioningError):
    """Provider refused the request; retrying will not help."""

    code = 'provider_rejected'


class ConfigurationError(ProvisioningError):
    """A downstream provider cannot be called because configuration is missing."""

    code = 'configuration_error'


class VerificationFailed(ProvisioningError):
    """A verifier reported a definitive failure."""

    code = 'verification_failed'
