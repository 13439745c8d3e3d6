"""Worker registry data model, store and server."""

from .definition import (
    DurableObjectBinding,
    DurableObjectRef,
    DurableObjectsConfig,
    ServiceBinding,
    WorkerDefinition,
    WorkerRegistry,
    registry_from_json,
)
from .server import RegistryServer
from .store import WorkerStore

__all__ = [
    "DurableObjectBinding",
    "DurableObjectRef",
    "DurableObjectsConfig",
    "RegistryServer",
    "ServiceBinding",
    "WorkerDefinition",
    "WorkerRegistry",
    "WorkerStore",
    "registry_from_json",
]
