import pytest

from shedwatch.dialer.driver import EscalationCallDriver
from shedwatch.shared.timeutil import DeviceClock
from tests.helpers.fakes import InMemoryStore, RecordingTelephony

# NZDT: device-local epochs are 13 hours ahead of UTC
NZDT_OFFSET_MS = -780 * 60_000


@pytest.fixture
def clock() -> DeviceClock:
    return DeviceClock("Pacific/Auckland", offset_ms=NZDT_OFFSET_MS)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def telephony() -> RecordingTelephony:
    return RecordingTelephony()


@pytest.fixture
def driver(telephony) -> EscalationCallDriver:
    return EscalationCallDriver(telephony)
