"""Provisioning state machine, run store and retry bookkeeping."""

from .errors import (
    ConfigurationError,
    ProviderRejected,
    ProvisioningError,
    TransientProviderError,
    VerificationFailed,
)
from .models import ProvisionRun, RunMetadata
from .retry import RETRY_POLICIES, RetryBook, RetryPolicy
from .states import (
    COMPLETE,
    FAILED,
    INIT,
    PROVISIONING_SEQUENCE,
    InvalidStateTransition,
)
from .store import (
    InMemoryProvisionStore,
    ProvisionStore,
    RunAlreadyExists,
    RunNotFound,
)

__all__ = [
    'COMPLETE',
    'ConfigurationError',
    'FAILED',
    'INIT',
    'InMemoryProvisionStore',
    'InvalidStateTransition',
    'PROVISIONING_SEQUENCE',
    'ProviderRejected',
    'ProvisionRun',
    'ProvisionStore',
    'ProvisioningError',
    'RETRY_POLICIES',
    'RetryBook',
    'RetryPolicy',
    'RunAlreadyExists',
    'RunMetadata',
    'RunNotFound',
    'TransientProviderError',
    'VerificationFailed',
]
