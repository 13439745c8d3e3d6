"""Client API for registering workers with the local worker registry.

All calls go over HTTP to the well-known registry port, whether the
registry runs in this process or another one. Registry use is a side
channel: when no registry is reachable, registration and lookups degrade
quietly instead of failing the worker.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import quote

import httpx

from .errors import BestEffort, RegistryError, is_registry_absent
from .registry.definition import (
    DurableObjectBinding,
    DurableObjectsConfig,
    ServiceBinding,
    WorkerDefinition,
    WorkerRegistry,
    registry_from_json,
)
from .service import RegistryService


logger = logging.getLogger(__name__)

ServiceBindings = Iterable[Union[ServiceBinding, Mapping[str, Any]]]
DurableObjectBindings = Union[
    DurableObjectsConfig,
    Mapping[str, Any],
    Iterable[Union[DurableObjectBinding, Mapping[str, Any]]],
]


def _binding_field(binding: Any, attr: str, key: str) -> Any:
    if isinstance(binding, Mapping):
        return binding.get(key)
    return getattr(binding, attr, None)


def _durable_object_bindings(durable_objects: Optional[DurableObjectBindings]) -> Iterable[Any]:
    if durable_objects is None:
        return ()
    if isinstance(durable_objects, DurableObjectsConfig):
        return durable_objects.bindings
    if isinstance(durable_objects, Mapping):
        return durable_objects.get("bindings") or ()
    return durable_objects


class RegistryClient:
    """
    Register, unregister and look up workers.

    Wraps a RegistryService, which provides this process's hand-off
    receiver and (when the port is free) the registry server itself.
    """

    def __init__(
        self,
        service: RegistryService,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._service = service
        self._owns_http = http is None
        # trust_env=False: registry traffic is loopback and must not go through a proxy
        self._http = http or httpx.AsyncClient(trust_env=False)

    @property
    def base_url(self) -> str:
        return self._service.config.base_url

    def _worker_url(self, name: str) -> str:
        return f"{self.base_url}/workers/{quote(name, safe='')}"

    async def register_worker(self, name: str, definition: WorkerDefinition) -> BestEffort[None]:
        """
        Register ``name`` so other local processes can find it.

        Starts this process's hand-off receiver, claims the registry if
        nobody holds it yet, then posts the definition with the receiver
        port merged in. Never raises for registry problems; the outcome is
        logged and returned.
        """
        receiver_port = await self._service.start_hand_off_receiver()

        try:
            await self._service.start_worker_registry()
        except (RegistryError, OSError):
            logger.error("Could not start local worker registry", exc_info=True)

        payload = definition.with_hand_off_receiver_port(receiver_port).to_json()
        try:
            response = await self._http.post(self._worker_url(name), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            outcome: BestEffort[None] = BestEffort.failure(e)
        else:
            outcome = BestEffort.success()

        outcome.log(logger, "Failed to register worker %s in local worker registry", name)
        return outcome

    async def unregister_worker(self, name: str) -> None:
        """
        Remove ``name`` from the registry, then step down from ownership.

        A missing registry counts as success. Any other failure is raised.
        """
        try:
            response = await self._http.delete(self._worker_url(name))
            response.raise_for_status()
        except httpx.HTTPError as e:
            if not is_registry_absent(e):
                logger.error("Failed to unregister worker %s", name, exc_info=True)
                raise
            logger.debug("No local worker registry to unregister %s from", name)

        await self._service.relinquish()

    async def get_registered_workers(self) -> Optional[WorkerRegistry]:
        """
        Fetch the whole registry.

        Returns None when no registry is running.
        """
        try:
            response = await self._http.get(f"{self.base_url}/workers")
            response.raise_for_status()
        except httpx.HTTPError as e:
            if not is_registry_absent(e):
                raise
            logger.debug("No local worker registry running")
            return None
        return registry_from_json(response.json())

    async def get_bound_registered_workers(
        self,
        *,
        services: Optional[ServiceBindings] = None,
        durable_objects: Optional[DurableObjectBindings] = None,
    ) -> WorkerRegistry:
        """
        Registered workers that the caller has bindings to.

        A worker matches if it is the target of one of ``services`` or the
        ``script_name`` of one of ``durable_objects``.
        """
        service_names = {
            _binding_field(binding, "service", "service") for binding in services or ()
        }
        durable_object_services = {
            _binding_field(binding, "script_name", "script_name")
            for binding in _durable_object_bindings(durable_objects)
        }
        wanted = (service_names | durable_object_services) - {None}

        workers = await self.get_registered_workers() or {}
        return {name: definition for name, definition in workers.items() if name in wanted}

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
