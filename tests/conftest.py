"""Pytest configuration for platform-factory tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from factory_plane.app.inmemory import build_inmemory_providers
from factory_plane.app.provisioning.alerts import AlertPayload
from factory_plane.app.provisioning.store import InMemoryProvisionStore
from factory_plane.app.settings import FactorySettings


class RecordingAlerts:
    """Alert sender that keeps every payload instead of delivering it."""

    def __init__(self):
        self.calls: list[AlertPayload] = []

    async def send_alert(self, payload: AlertPayload) -> list[str]:
        self.calls.append(payload)
        return ['recorded']


class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings():
    return FactorySettings(stripe_default_price_id='price_test')


@pytest.fixture
def store():
    return InMemoryProvisionStore()


@pytest.fixture
def providers():
    return build_inmemory_providers()


@pytest.fixture
def alerts():
    return RecordingAlerts()


@pytest.fixture
def sleep():
    return RecordingSleep()
