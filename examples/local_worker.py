"""
Local worker example

Starts a tiny HTTP "worker" and announces it in the local worker registry.
Run it in two or three terminals with different names: the first one owns
the registry on port 6284, and when it exits the registry is handed to one
of the others.

Run:
  python examples/local_worker.py api 8787
  python examples/local_worker.py auth 8788

Then try:
  curl -s http://localhost:6284/workers
"""

from __future__ import annotations

import logging
import sys

import anyio

from devregistry import RegistryClient, WorkerDefinition, open_registry_service
from devregistry.http import HttpRequest, HttpResponse, HttpRouter, HttpServer


async def main(name: str, port: int) -> None:
    async def handle_root(_req: HttpRequest) -> HttpResponse:
        return HttpResponse.text(f"hello from {name}\n")

    async with open_registry_service() as registry:
        client = RegistryClient(registry)

        async with anyio.create_task_group() as tg:
            worker = HttpServer(router=HttpRouter({("GET", "/"): handle_root}), port=port)
            await worker.start(tg)

            await client.register_worker(
                name, WorkerDefinition(mode="local", protocol="http", host="localhost", port=port)
            )
            print(f"{name} listening on http://localhost:{port}")
            print(f"registry owner: {registry.is_owner}")

            try:
                while True:
                    workers = await client.get_registered_workers() or {}
                    print("registered:", ", ".join(sorted(workers)) or "(none)")
                    await anyio.sleep(5)
            finally:
                with anyio.CancelScope(shield=True):
                    await client.unregister_worker(name)
                    await client.aclose()
                    await worker.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    anyio.run(main, sys.argv[1], int(sys.argv[2]))
