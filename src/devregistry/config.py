"""Configuration for the local worker registry."""

from dataclasses import dataclass


DEV_REGISTRY_PORT = 6284


@dataclass(frozen=True)
class RegistryConfig:
    """Where the registry lives and how its servers behave.

    The defaults describe the well-known registry every participating
    process agrees on; tests override ``port`` to stay isolated.
    """
    # Client-side target of the well-known registry
    host: str = "localhost"
    port: int = DEV_REGISTRY_PORT

    # Loopback address the registry server, port check and hand-off receiver bind
    bind_host: str = "127.0.0.1"

    # Seconds a stopping server waits for in-flight requests
    drain_timeout: float = 5.0

    max_body_bytes: int = 1 * 1024 * 1024

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"
