"""The registry server: an HTTP API over a WorkerStore on the well-known port.

Endpoints:
  GET    /workers          -> the full registry
  POST   /workers/{name}   -> store the JSON body under name
  DELETE /workers/{name}   -> drop name (no error if absent)
  DELETE /workers          -> clear everything

Write endpoints reply with a JSON ``null``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from anyio.abc import TaskGroup

from ..config import RegistryConfig
from ..http import HttpRequest, HttpResponse, HttpRouter, HttpServer
from .store import WorkerStore


logger = logging.getLogger(__name__)


class RegistryServer:
    """
    One running registry.

    Owns its WorkerStore for its whole lifetime: the store is created with
    the server and discarded when the server stops.
    """

    def __init__(
        self,
        config: RegistryConfig,
        workers: Optional[Mapping[str, Any]] = None,
    ):
        self.config = config
        self.store = WorkerStore(workers)
        self._http = HttpServer(
            router=self._build_router(),
            host=config.bind_host,
            port=config.port,
            max_body_bytes=config.max_body_bytes,
            drain_timeout=config.drain_timeout,
        )

    @property
    def running(self) -> bool:
        return self._http.running

    @property
    def port(self) -> int:
        return self._http.port

    def _build_router(self) -> HttpRouter:
        return HttpRouter({
            ("GET", "/workers"): self._list_workers,
            ("POST", "/workers/{name}"): self._put_worker,
            ("DELETE", "/workers/{name}"): self._delete_worker,
            ("DELETE", "/workers"): self._clear_workers,
        })

    async def _list_workers(self, _req: HttpRequest) -> HttpResponse:
        return HttpResponse.json(self.store.snapshot())

    async def _put_worker(self, req: HttpRequest) -> HttpResponse:
        name = req.params["name"]
        self.store.put(name, req.json())
        logger.debug("Registered worker %r", name)
        return HttpResponse.json(None)

    async def _delete_worker(self, req: HttpRequest) -> HttpResponse:
        name = req.params["name"]
        if self.store.remove(name):
            logger.debug("Unregistered worker %r", name)
        return HttpResponse.json(None)

    async def _clear_workers(self, _req: HttpRequest) -> HttpResponse:
        dropped = len(self.store)
        self.store.clear()
        logger.debug("Cleared worker registry (%d workers)", dropped)
        return HttpResponse.json(None)

    async def start(self, task_group: TaskGroup) -> None:
        """Bind the well-known port. Raises OSError if it is taken."""
        await self._http.start(task_group)
        logger.info(
            "Local worker registry listening on %s:%s", self.config.bind_host, self.port
        )

    async def stop(self) -> None:
        await self._http.stop()
        logger.debug("Local worker registry stopped")
