"""Local worker registry with ownership hand-off.

Short-lived processes on one machine find each other's workers through a
registry served on a well-known port by whichever process claimed it first.
When that process exits it hands the registry to another live participant.
"""

from .config import DEV_REGISTRY_PORT, RegistryConfig
from .errors import BestEffort, PortCheckError, RegistryError, is_registry_absent
from .ports import is_port_available
from .registry import (
    DurableObjectBinding,
    DurableObjectRef,
    DurableObjectsConfig,
    RegistryServer,
    ServiceBinding,
    WorkerDefinition,
    WorkerRegistry,
    WorkerStore,
)
from .handoff import (
    CandidateSelector,
    HandoffCandidate,
    HandoffCoordinator,
    HandoffReceiver,
    RandomSelector,
)
from .service import RegistryService, open_registry_service
from .client import RegistryClient

__all__ = [
    # Configuration
    "DEV_REGISTRY_PORT",
    "RegistryConfig",
    # Errors
    "BestEffort",
    "PortCheckError",
    "RegistryError",
    "is_registry_absent",
    "is_port_available",
    # Data model
    "DurableObjectBinding",
    "DurableObjectRef",
    "DurableObjectsConfig",
    "ServiceBinding",
    "WorkerDefinition",
    "WorkerRegistry",
    # Registry server
    "WorkerStore",
    "RegistryServer",
    # Hand-off
    "CandidateSelector",
    "HandoffCandidate",
    "HandoffCoordinator",
    "HandoffReceiver",
    "RandomSelector",
    # Process-level API
    "RegistryService",
    "open_registry_service",
    "RegistryClient",
]
