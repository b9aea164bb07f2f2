"""
Shared fixtures for scriptwriter tests: sockets are blocked for every test,
so model, Supabase and Redis clients must be mocked or replaced by the
fixture/in-memory implementations.
"""

import socket
from unittest.mock import patch

import pytest


class NetworkBlockedError(Exception):
    """Raised when a test opens a socket."""
    pass


def _block_socket_connect(*args, **kwargs):
    raise NetworkBlockedError(
        "Network access is blocked in scriptwriter tests; "
        "use FixtureJsonClient, InMemorySceneletPersistence or a mocked redis client."
    )


@pytest.fixture(autouse=True)
def block_network():
    with patch.object(socket.socket, 'connect', _block_socket_connect):
        with patch.object(socket, 'create_connection', _block_socket_connect):
            yield


@pytest.fixture
def story_constitution() -> str:
    return "A lighthouse keeper discovers the lamp is signalling to something beneath the sea."
