"""Worker definitions and the binding declarations used to filter them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Optional


logger = logging.getLogger(__name__)


Protocol = Literal["http", "https"]
Mode = Literal["local", "remote"]


@dataclass(frozen=True)
class DurableObjectRef:
    """A stateful sub-resource exposed by a worker."""
    name: str
    class_name: str

    def to_json(self) -> dict[str, str]:
        return {"name": self.name, "className": self.class_name}

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "DurableObjectRef":
        return cls(name=data["name"], class_name=data["className"])


@dataclass(frozen=True)
class WorkerDefinition:
    """
    Where a registered worker can be reached.

    Serialised with the camelCase keys the registry speaks on the wire;
    optional fields that are unset are left out. ``mode`` is the one
    required field.
    """
    mode: Mode
    port: Optional[int] = None
    protocol: Optional[Protocol] = None
    host: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    durable_objects: tuple[DurableObjectRef, ...] = ()
    durable_objects_host: Optional[str] = None
    durable_objects_port: Optional[int] = None
    hand_off_receiver_port: Optional[int] = None

    def with_hand_off_receiver_port(self, port: Optional[int]) -> "WorkerDefinition":
        return replace(self, hand_off_receiver_port=port)

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": self.mode,
            "durableObjects": [ref.to_json() for ref in self.durable_objects],
        }
        optional = {
            "port": self.port,
            "protocol": self.protocol,
            "host": self.host,
            "headers": self.headers,
            "durableObjectsHost": self.durable_objects_host,
            "durableObjectsPort": self.durable_objects_port,
            "handOffReceiverPort": self.hand_off_receiver_port,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "WorkerDefinition":
        """Build from a wire mapping. Unknown keys are ignored.

        Raises ValueError, KeyError or TypeError when the mapping is not a
        usable definition.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"worker definition must be an object, got {type(data).__name__}")
        mode = data["mode"]
        if mode not in ("local", "remote"):
            raise ValueError(f"unknown worker mode {mode!r}")
        headers = data.get("headers")
        return cls(
            mode=mode,
            port=data.get("port"),
            protocol=data.get("protocol"),
            host=data.get("host"),
            headers=dict(headers) if headers is not None else None,
            durable_objects=tuple(
                DurableObjectRef.from_json(ref) for ref in data.get("durableObjects") or ()
            ),
            durable_objects_host=data.get("durableObjectsHost"),
            durable_objects_port=data.get("durableObjectsPort"),
            hand_off_receiver_port=data.get("handOffReceiverPort"),
        )


WorkerRegistry = dict[str, WorkerDefinition]


def registry_from_json(data: Any) -> WorkerRegistry:
    """
    Parse a registry as served by ``GET /workers``.

    The server stores whatever clients post, so entries that are not valid
    definitions are skipped (and logged) rather than failing the whole read.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"worker registry must be an object, got {type(data).__name__}")
    workers: WorkerRegistry = {}
    for name, entry in data.items():
        try:
            workers[name] = WorkerDefinition.from_json(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed registry entry %r: %r", name, e)
    return workers


@dataclass(frozen=True)
class ServiceBinding:
    """A service binding declared by the calling worker."""
    binding: str
    service: str
    environment: Optional[str] = None


@dataclass(frozen=True)
class DurableObjectBinding:
    """
    A durable object binding declared by the calling worker.

    ``script_name`` names the worker that actually hosts the class; it is
    unset when the class lives in the caller itself.
    """
    name: str
    class_name: str
    script_name: Optional[str] = None
    environment: Optional[str] = None


@dataclass(frozen=True)
class DurableObjectsConfig:
    bindings: tuple[DurableObjectBinding, ...] = field(default_factory=tuple)
