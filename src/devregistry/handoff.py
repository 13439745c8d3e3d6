"""Registry hand-off between processes.

When the process that owns the registry is about to let go of it, the
HandoffCoordinator picks one other live participant at random and pushes
the whole registry to that participant's HandoffReceiver, which then claims
the well-known port itself.

Ordering follows the owner-steps-down-first protocol: the registry server
is stopped *before* the state is pushed, so the receiver can bind the port
as soon as the push lands. A third process may grab the port in between;
ownership is advisory, so that is accepted.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

import httpx
from anyio.abc import TaskGroup

from .config import RegistryConfig
from .errors import BestEffort
from .http import HttpRequest, HttpResponse, HttpRouter, HttpServer

if TYPE_CHECKING:
    from .service import RegistryService


logger = logging.getLogger(__name__)

ReceiveCallback = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class HandoffCandidate:
    """A registered worker whose process can take over the registry."""
    name: str
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"


def find_candidates(
    workers: Mapping[str, Any],
    own_receiver_port: Optional[int],
    default_host: str,
) -> list[HandoffCandidate]:
    """
    Workers advertising a hand-off receiver other than our own.

    Entries are raw JSON values, so anything that is not an object with an
    integer ``handOffReceiverPort`` is skipped.
    """
    candidates = []
    for name, definition in workers.items():
        if not isinstance(definition, Mapping):
            continue
        port = definition.get("handOffReceiverPort")
        if not isinstance(port, int) or isinstance(port, bool):
            continue
        if port == own_receiver_port:
            continue
        host = definition.get("host") or default_host
        candidates.append(HandoffCandidate(name=name, host=host, port=port))
    return candidates


class CandidateSelector(Protocol):
    def choose(self, candidates: Sequence[HandoffCandidate]) -> HandoffCandidate: ...


class RandomSelector:
    """Uniform random choice, so no process is systematically favoured."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def choose(self, candidates: Sequence[HandoffCandidate]) -> HandoffCandidate:
        if not candidates:
            raise ValueError("no hand-off candidates to choose from")
        return candidates[self._rng.randrange(len(candidates))]


class HandoffReceiver:
    """
    Listens on an ephemeral port for a registry pushed by an exiting owner.

    Exposes a single endpoint, ``POST /``, whose body is the full registry.
    """

    def __init__(self, on_receive: ReceiveCallback, config: RegistryConfig):
        self._on_receive = on_receive
        self._http = HttpServer(
            router=HttpRouter({("POST", "/"): self._receive}),
            host=config.bind_host,
            port=0,
            max_body_bytes=config.max_body_bytes,
            drain_timeout=config.drain_timeout,
        )

    @property
    def port(self) -> int:
        return self._http.port

    @property
    def running(self) -> bool:
        return self._http.running

    async def _receive(self, req: HttpRequest) -> HttpResponse:
        workers = req.json()
        if not isinstance(workers, dict):
            raise ValueError("hand-off body must be a JSON object")
        await self._on_receive(workers)
        return HttpResponse.json(None)

    async def start(self, task_group: TaskGroup) -> None:
        await self._http.start(task_group)
        logger.debug("Hand-off receiver listening on port %s", self.port)

    async def stop(self) -> None:
        await self._http.stop()


class HandoffCoordinator:
    """Runs the step-down sequence for a RegistryService."""

    def __init__(
        self,
        service: "RegistryService",
        selector: Optional[CandidateSelector] = None,
    ):
        self._service = service
        self._selector = selector or RandomSelector()

    async def relinquish(self) -> Optional[BestEffort[None]]:
        """
        Give up the registry and release this process's servers.

        Returns the outcome of the push if one was attempted, otherwise None.
        Push failures are logged here and never raised.
        """
        outcome = None
        server = self._service.server

        if server is not None:
            workers = server.store.snapshot()
            candidates = find_candidates(
                workers,
                self._service.hand_off_receiver_port,
                self._service.config.host,
            )
            if candidates:
                chosen = self._selector.choose(candidates)
                logger.debug("Handing off local worker registry to %s...", chosen.name)
                await self._service.stop_worker_registry()
                outcome = await self._push(chosen, workers)
                outcome.log(logger, "Failed to hand off local worker registry to %s", chosen.name)
                if outcome.ok:
                    logger.info("Handed off local worker registry to %s", chosen.name)
            else:
                logger.debug(
                    "No other processes available to hand off local worker registry to."
                )

        await self._service.stop_worker_registry()
        await self._service.stop_hand_off_receiver()
        return outcome

    async def _push(self, chosen: HandoffCandidate, workers: dict[str, Any]) -> BestEffort[None]:
        try:
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.post(chosen.url, json=workers)
                response.raise_for_status()
        # Entries are unvalidated, so a candidate's host may not even form a valid URL.
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            return BestEffort.failure(e)
        return BestEffort.success()
