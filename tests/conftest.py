import pytest
from pytest_socket import disable_socket

from energy_monitor.topics import build_registry, build_topics


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, MQTT, DNS, etc) will immediately raise a SocketBlockedError.
    The event loop's self-pipe is a unix socket, so those stay allowed.
    """
    disable_socket(allow_unix_socket=True)


@pytest.fixture
def topics():
    return build_topics()


@pytest.fixture
def registry(topics):
    return build_registry(topics)


@pytest.fixture
def bus(mocker):
    """BusClient stand-in recording publishes"""
    return mocker.AsyncMock()
