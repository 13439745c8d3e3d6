"""In-memory worker store owned by the running registry server."""

from typing import Any, Dict, Mapping, Optional


class WorkerStore:
    """
    Maps worker names to their raw JSON definitions.

    The store keeps whatever the registering client sent; shape checks are
    the client's job. It is only touched from the owning server's request
    handlers, all on one event loop, so it needs no lock.
    """

    def __init__(self, workers: Optional[Mapping[str, Any]] = None):
        self._workers: Dict[str, Any] = dict(workers or {})

    def put(self, name: str, definition: Any) -> None:
        """Insert or overwrite a worker. Last write wins."""
        self._workers[name] = definition

    def remove(self, name: str) -> bool:
        """
        Remove a worker.

        Returns True if it was present, False otherwise.
        """
        if name not in self:
            return False
        del self._workers[name]
        return True

    def clear(self) -> None:
        self._workers = {}

    def replace(self, workers: Mapping[str, Any]) -> None:
        """Swap in a whole registry, e.g. one received in a hand-off."""
        self._workers = dict(workers)

    def snapshot(self) -> Dict[str, Any]:
        """Shallow copy of the registry, safe to serialise or hand off."""
        return dict(self._workers)

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, name: object) -> bool:
        return name in self._workers
