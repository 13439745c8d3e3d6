"""Shared fixtures for registry tests."""

import socket
from typing import Callable

import pytest

from devregistry import RegistryConfig


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def port_factory() -> Callable[[], int]:
    """Hand out loopback ports nothing is listening on."""
    return _unused_port


@pytest.fixture
def config(port_factory) -> RegistryConfig:
    """A registry on a private port, so tests never touch the real one."""
    return RegistryConfig(host="127.0.0.1", port=port_factory(), drain_timeout=1.0)
