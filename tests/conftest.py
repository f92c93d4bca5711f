"""Pytest configuration and fixtures for the filter stream client tests."""

import pytest

from filter_stream.client.connection_manager import ConnectionManager
from filter_stream.shared.config import Settings
from tests.doubles.fake_transport import FakeScheduler, FakeTransportFactory


@pytest.fixture
def test_settings() -> Settings:
    """Settings pinned to known values, independent of the environment."""
    return Settings(
        BACKEND_URL="http://backend.test:8080",
        WS_PATH="/ws",
        RECONNECT_BASE_DELAY_MS=2000,
        MAX_RECONNECT_ATTEMPTS=5,
        EVENT_BUFFER_SIZE=100,
    )


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def manager(test_settings, factory, scheduler) -> ConnectionManager:
    """Connection manager wired to fake transports and a manual timer scheduler."""
    return ConnectionManager(test_settings, transport_factory=factory, scheduler=scheduler)
