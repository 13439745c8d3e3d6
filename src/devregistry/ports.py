"""Availability check for the well-known registry port."""

import errno
import logging

import anyio

from .errors import PortCheckError


logger = logging.getLogger(__name__)


async def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """
    Check whether the registry port is free by binding it and letting go.

    Returns False if the address is in use. Any other bind failure is
    unexpected and raised as PortCheckError.
    """
    try:
        listener = await anyio.create_tcp_listener(local_host=host, local_port=port)
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            logger.debug("Port %s:%s is in use", host, port)
            return False
        raise PortCheckError(f"could not check {host}:{port}: {e}") from e
    await listener.aclose()
    return True
