"""Shared fixtures for the NextBus client tests."""

import pytest
from nextbus import ClientConfig, NextBusClient
from nextbus.mock_client import MockTransport


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep NEXTBUS_* variables from the outer shell out of every test."""
    for name in (
        "NEXTBUS_BASE_URL",
        "NEXTBUS_TIMEOUT",
        "NEXTBUS_USER_AGENT",
        "NEXTBUS_TEST_MODE",
        "NEXTBUS_TEST_SCENARIO",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_transport() -> MockTransport:
    """Transport serving the canned documents with no failures."""
    return MockTransport("normal", seed=1)


@pytest.fixture
def client(mock_transport: MockTransport) -> NextBusClient:
    """Client wired to the canned-document transport."""
    return NextBusClient(ClientConfig(), transport=mock_transport)
