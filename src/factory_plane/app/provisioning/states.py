"""Provisioning state sequence and transition table.

Canonical flow for one tenant run:
  INIT -> GITHUB_CREATING -> SUPABASE_CREATING -> SUPABASE_READY
  -> SCHEMA_MIGRATED -> AUTH_CONFIGURED -> STORAGE_READY
  -> VERCEL_CREATING -> VERCEL_DEPLOYING -> ELEVEN_AGENT_CREATING
  -> STRIPE_CUSTOMER_CREATING -> STRIPE_SUBSCRIPTION_CREATING -> COMPLETE

Error transitions:
  any non-terminal state -> FAILED
  FAILED --(explicit resume)--> the state the run failed in

A persisted state names the step that runs next, so a run sitting in
``VERCEL_DEPLOYING`` has finished everything up to and including
``VERCEL_CREATING``.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

INIT = 'INIT'
GITHUB_CREATING = 'GITHUB_CREATING'
SUPABASE_CREATING = 'SUPABASE_CREATING'
SUPABASE_READY = 'SUPABASE_READY'
SCHEMA_MIGRATED = 'SCHEMA_MIGRATED'
AUTH_CONFIGURED = 'AUTH_CONFIGURED'
STORAGE_READY = 'STORAGE_READY'
VERCEL_CREATING = 'VERCEL_CREATING'
VERCEL_DEPLOYING = 'VERCEL_DEPLOYING'
ELEVEN_AGENT_CREATING = 'ELEVEN_AGENT_CREATING'
STRIPE_CUSTOMER_CREATING = 'STRIPE_CUSTOMER_CREATING'
STRIPE_SUBSCRIPTION_CREATING = 'STRIPE_SUBSCRIPTION_CREATING'
COMPLETE = 'COMPLETE'
FAILED = 'FAILED'

PROVISIONING_SEQUENCE = (
    INIT,
    GITHUB_CREATING,
    SUPABASE_CREATING,
    SUPABASE_READY,
    SCHEMA_MIGRATED,
    AUTH_CONFIGURED,
    STORAGE_READY,
    VERCEL_CREATING,
    VERCEL_DEPLOYING,
    ELEVEN_AGENT_CREATING,
    STRIPE_CUSTOMER_CREATING,
    STRIPE_SUBSCRIPTION_CREATING,
    COMPLETE,
)

SYSTEMS = ('github', 'supabase', 'vercel', 'eleven', 'stripe')

TERMINAL_STATES = frozenset({COMPLETE, FAILED})
ACTIVE_STATES = frozenset(PROVISIONING_SEQUENCE) - TERMINAL_STATES

# External system whose retry policy governs each state.
STATE_SYSTEM: Mapping[str, str | None] = MappingProxyType(
    {
        INIT: None,
        GITHUB_CREATING: 'github',
        SUPABASE_CREATING: 'supabase',
        SUPABASE_READY: 'supabase',
        SCHEMA_MIGRATED: 'supabase',
        AUTH_CONFIGURED: 'supabase',
        STORAGE_READY: 'supabase',
        VERCEL_CREATING: 'vercel',
        VERCEL_DEPLOYING: 'vercel',
        ELEVEN_AGENT_CREATING: 'eleven',
        STRIPE_CUSTOMER_CREATING: 'stripe',
        STRIPE_SUBSCRIPTION_CREATING: 'stripe',
    }
)


def _build_transitions() -> Mapping[str, frozenset[str]]:
    table: dict[str, frozenset[str]] = {}
    for current, following in zip(PROVISIONING_SEQUENCE, PROVISIONING_SEQUENCE[1:]):
        table[current] = frozenset({following, FAILED})
    table[COMPLETE] = frozenset()
    table[FAILED] = ACTIVE_STATES
    return MappingProxyType(table)


ALLOWED_TRANSITIONS = _build_transitions()


@dataclass(frozen=True, slots=True)
class StateDescription:
    """Human-readable label for status consumers."""

    title: str
    description: str
    progress: int


STATE_DESCRIPTIONS: Mapping[str, StateDescription] = MappingProxyType(
    {
        INIT: StateDescription(
            'Initializing', 'Preparing to provision your platform...', 0,
        ),
        GITHUB_CREATING: StateDescription(
            'Creating Repository',
            'Setting up the source repository with platform code...',
            8,
        ),
        SUPABASE_CREATING: StateDescription(
            'Creating Database', 'Creating your database project...', 16,
        ),
        SUPABASE_READY: StateDescription(
            'Starting Database', 'Waiting for the database to come online...', 24,
        ),
        SCHEMA_MIGRATED: StateDescription(
            'Applying Schema', 'Configuring database structure...', 32,
        ),
        AUTH_CONFIGURED: StateDescription(
            'Configuring Authentication',
            'Securing access and redirect URLs...',
            40,
        ),
        STORAGE_READY: StateDescription(
            'Preparing Storage', 'Creating storage buckets...', 48,
        ),
        VERCEL_CREATING: StateDescription(
            'Creating Deployment',
            'Setting up the hosting project with environment variables...',
            56,
        ),
        VERCEL_DEPLOYING: StateDescription(
            'Deploying', 'Building and deploying your platform...', 68,
        ),
        ELEVEN_AGENT_CREATING: StateDescription(
            'Creating Voice Agent', 'Setting up your AI interviewer...', 80,
        ),
        STRIPE_CUSTOMER_CREATING: StateDescription(
            'Setting Up Billing', 'Creating your billing account...', 88,
        ),
        STRIPE_SUBSCRIPTION_CREATING: StateDescription(
            'Activating Subscription', 'Starting your subscription...', 95,
        ),
        COMPLETE: StateDescription('Complete', 'Your platform is ready to use!', 100),
        FAILED: StateDescription('Failed', 'Provisioning encountered an error.', 0),
    }
)


class InvalidStateTransition(ValueError):
    """Raised for invalid provisioning state transitions."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state!r} -> {to_state!r}'
        )


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def system_for_state(state: str) -> str | None:
    """Return the external system governing ``state``, if any."""
    if state not in STATE_SYSTEM:
        raise ValueError(f'unknown or terminal state: {state!r}')
    return STATE_SYSTEM[state]


def next_state(state: str) -> str:
    """Return the state that follows ``state`` in the canonical sequence."""
    if state in TERMINAL_STATES or state not in PROVISIONING_SEQUENCE:
        raise InvalidStateTransition(state, 'next')
    return PROVISIONING_SEQUENCE[PROVISIONING_SEQUENCE.index(state) + 1]


def require_transition(from_state: str, to_state: str) -> None:
    if to_state not in ALLOWED_TRANSITIONS.get(from_state, frozenset()):
        raise InvalidStateTransition(from_state, to_state)


def describe(state: str) -> StateDescription:
    return STATE_DESCRIPTIONS.get(state, STATE_DESCRIPTIONS[FAILED])
