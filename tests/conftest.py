"""
Pytest configuration and fixtures.
"""

import os

# Read by calmward.utils.logger at import time
os.environ["CALMWARD_LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402

from calmward.storage.kv_store import InMemoryKeyValueStore, KeyValueStore, StorageError  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Setup test environment variables."""

    test_env = {
        "CALMWARD_API_BASE_URL": "",
    }

    previous = {key: os.environ.get(key) for key in test_env}
    for key, value in test_env.items():
        os.environ[key] = value

    yield

    # Cleanup
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance_minutes(self, minutes: float) -> None:
        self.now += int(minutes * 60_000)


class BrokenStore(KeyValueStore):
    """Store whose every operation fails."""

    async def get(self, key):
        raise StorageError("store unavailable")

    async def set(self, key, value):
        raise StorageError("store unavailable")

    async def remove(self, key):
        raise StorageError("store unavailable")


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broken_store():
    return BrokenStore()


@pytest.fixture
def make_manager(clock):
    """Factory for SessionManager instances bound to the fake clock."""
    from calmward.state.session_manager import SessionManager

    def _make(store, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("default_timeout_minutes", 30)
        return SessionManager(store, **kwargs)

    return _make
