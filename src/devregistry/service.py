"""Per-process registry state: the owned server, the hand-off receiver, and their lifecycles."""

from __future__ import annotations

import errno
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

import anyio
from anyio.abc import TaskGroup

from .config import RegistryConfig
from .errors import BestEffort
from .handoff import CandidateSelector, HandoffCoordinator, HandoffReceiver
from .ports import is_port_available
from .registry.server import RegistryServer


logger = logging.getLogger(__name__)


class RegistryService:
    """
    Everything one process holds for the local worker registry.

    - ``server``: the RegistryServer, set only while this process owns the registry
    - ``receiver``: the HandoffReceiver other owners push the registry to

    Both run in the TaskGroup passed in, which must outlive them.
    """

    def __init__(
        self,
        task_group: TaskGroup,
        config: Optional[RegistryConfig] = None,
        *,
        selector: Optional[CandidateSelector] = None,
    ):
        self._task_group = task_group
        self.config = config or RegistryConfig()
        self.coordinator = HandoffCoordinator(self, selector)
        self._server: Optional[RegistryServer] = None
        self._receiver: Optional[HandoffReceiver] = None
        # Registrations may run concurrently; each lock covers a check-then-bind.
        self._server_lock = anyio.Lock()
        self._receiver_lock = anyio.Lock()

    @property
    def server(self) -> Optional[RegistryServer]:
        return self._server

    @property
    def is_owner(self) -> bool:
        return self._server is not None and self._server.running

    @property
    def hand_off_receiver_port(self) -> Optional[int]:
        if self._receiver is None or not self._receiver.running:
            return None
        return self._receiver.port

    async def start_worker_registry(self, initial: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Become the registry owner if the well-known port is free.

        Returns True if this process owns the registry afterwards. Calling it
        while already owning is a no-op, except that ``initial`` (when given)
        replaces the current contents.
        """
        async with self._server_lock:
            if self.is_owner:
                assert self._server is not None
                if initial is not None:
                    self._server.store.replace(initial)
                return True

            if not await is_port_available(self.config.port, self.config.bind_host):
                return False

            server = RegistryServer(self.config, initial)
            try:
                await server.start(self._task_group)
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise
                logger.warning(
                    "Another process claimed port %s before this one could bind it",
                    self.config.port,
                )
                return False
            self._server = server
            return True

    async def stop_worker_registry(self) -> None:
        """Stop the registry server (if running) and discard its store."""
        async with self._server_lock:
            server, self._server = self._server, None
            if server is not None:
                await server.stop()

    async def start_hand_off_receiver(self) -> Optional[int]:
        """
        Make sure this process is listening for hand-offs.

        Returns the receiver port, or None if the receiver could not bind;
        the process then simply registers without hand-off capability.
        """
        async with self._receiver_lock:
            if self._receiver is not None and self._receiver.running:
                return self._receiver.port

            receiver = HandoffReceiver(self._receive_hand_off, self.config)
            try:
                await receiver.start(self._task_group)
            except OSError:
                logger.error(
                    "Could not create hand-off receiver for local worker registry",
                    exc_info=True,
                )
                return None
            self._receiver = receiver
            return receiver.port

    async def stop_hand_off_receiver(self) -> None:
        async with self._receiver_lock:
            receiver, self._receiver = self._receiver, None
            if receiver is not None:
                await receiver.stop()

    async def _receive_hand_off(self, workers: dict[str, Any]) -> None:
        logger.debug("Received local worker registry hand-off with %d workers", len(workers))
        if await self.start_worker_registry(initial=workers):
            logger.info("Took over the local worker registry on port %s", self.config.port)
        else:
            logger.warning(
                "Could not take over the local worker registry; dropping %d handed-off workers",
                len(workers),
            )

    async def relinquish(self) -> Optional[BestEffort[None]]:
        """Hand the registry off (if owned) and release this process's servers."""
        return await self.coordinator.relinquish()

    async def aclose(self) -> None:
        await self.relinquish()


@asynccontextmanager
async def open_registry_service(
    config: Optional[RegistryConfig] = None,
    *,
    selector: Optional[CandidateSelector] = None,
) -> AsyncIterator[RegistryService]:
    """
    Run a RegistryService for the duration of the block.

    On exit the registry is handed off or discarded, even if the block is
    being cancelled.
    """
    async with anyio.create_task_group() as tg:
        service = RegistryService(tg, config, selector=selector)
        try:
            yield service
        finally:
            with anyio.CancelScope(shield=True):
                await service.aclose()
