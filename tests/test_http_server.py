"""Tests for the AnyIO HTTP server and router."""

from __future__ import annotations

import anyio
import httpx
import pytest

from devregistry import is_port_available
from devregistry.http import HttpRequest, HttpResponse, HttpRouter, HttpServer


async def handle_root(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.text("hello from devregistry\n")


async def handle_health(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.json({"ok": True})


async def handle_echo(req: HttpRequest) -> HttpResponse:
    return HttpResponse(
        status=200,
        headers={"content-type": req.headers.get("content-type", "application/octet-stream")},
        body=req.body,
    )


async def handle_item(req: HttpRequest) -> HttpResponse:
    return HttpResponse.json({"name": req.params["name"]})


async def handle_parse(req: HttpRequest) -> HttpResponse:
    return HttpResponse.json(req.json())


async def handle_boom(_req: HttpRequest) -> HttpResponse:
    raise RuntimeError("boom")


def make_router() -> HttpRouter:
    return HttpRouter({
        ("GET", "/"): handle_root,
        ("GET", "/health"): handle_health,
        ("POST", "/echo"): handle_echo,
        ("GET", "/items/{name}"): handle_item,
        ("POST", "/parse"): handle_parse,
        ("GET", "/boom"): handle_boom,
    })


@pytest.mark.anyio
async def test_server_binds_ephemeral_port_and_serves_routes():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router())
        await server.start(tg)
        assert server.port != 0
        assert server.running

        base = f"http://127.0.0.1:{server.port}"
        async with httpx.AsyncClient(trust_env=False) as client:
            resp = await client.get(f"{base}/")
            assert resp.status_code == 200
            assert resp.text == "hello from devregistry\n"
            assert resp.headers["connection"] == "close"

            resp = await client.get(f"{base}/health")
            assert resp.json() == {"ok": True}
            assert resp.headers["content-type"].startswith("application/json")

            resp = await client.post(
                f"{base}/echo", content=b"hello there", headers={"content-type": "text/plain"}
            )
            assert resp.content == b"hello there"
            assert resp.headers["content-type"] == "text/plain"

        await server.stop()
        assert not server.running


@pytest.mark.anyio
async def test_path_parameters_are_url_decoded():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router())
        await server.start(tg)

        async with httpx.AsyncClient(trust_env=False) as client:
            resp = await client.get(f"http://127.0.0.1:{server.port}/items/my%20worker")
            assert resp.json() == {"name": "my worker"}

            resp = await client.get(f"http://127.0.0.1:{server.port}/items/plain?x=1")
            assert resp.json() == {"name": "plain"}

        await server.stop()


@pytest.mark.anyio
async def test_error_statuses():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router())
        await server.start(tg)

        base = f"http://127.0.0.1:{server.port}"
        async with httpx.AsyncClient(trust_env=False) as client:
            assert (await client.get(f"{base}/missing")).status_code == 404
            assert (await client.delete(f"{base}/health")).status_code == 405
            assert (await client.post(f"{base}/parse", content=b"{nope")).status_code == 400
            assert (await client.get(f"{base}/boom")).status_code == 500

        await server.stop()


@pytest.mark.anyio
async def test_stop_waits_for_in_flight_request():
    handler_entered = anyio.Event()
    release = anyio.Event()

    async def slow(_req: HttpRequest) -> HttpResponse:
        handler_entered.set()
        await release.wait()
        return HttpResponse.json("done")

    responses: list[httpx.Response] = []

    async with anyio.create_task_group() as tg:
        server = HttpServer(router=HttpRouter({("GET", "/slow"): slow}), drain_timeout=5.0)
        await server.start(tg)
        port = server.port

        async def do_request():
            async with httpx.AsyncClient(trust_env=False) as client:
                responses.append(await client.get(f"http://127.0.0.1:{port}/slow"))

        stopped = anyio.Event()

        async def do_stop():
            await server.stop()
            stopped.set()

        async with anyio.create_task_group() as work:
            work.start_soon(do_request)
            await handler_entered.wait()
            work.start_soon(do_stop)
            await anyio.sleep(0.05)
            # The port is held until the in-flight request drains.
            assert not stopped.is_set()
            release.set()

        assert stopped.is_set()
        assert [r.json() for r in responses] == ["done"]
        assert await is_port_available(port) is True


@pytest.mark.anyio
async def test_stop_gives_up_on_stuck_request_after_drain_timeout():
    handler_entered = anyio.Event()

    async def stuck(_req: HttpRequest) -> HttpResponse:
        handler_entered.set()
        await anyio.sleep_forever()
        return HttpResponse.json(None)  # pragma: no cover

    failures: list[Exception] = []

    async with anyio.create_task_group() as tg:
        server = HttpServer(router=HttpRouter({("GET", "/stuck"): stuck}), drain_timeout=0.1)
        await server.start(tg)
        port = server.port

        async def do_request():
            async with httpx.AsyncClient(trust_env=False) as client:
                try:
                    await client.get(f"http://127.0.0.1:{port}/stuck")
                except httpx.HTTPError as e:
                    failures.append(e)

        async with anyio.create_task_group() as work:
            work.start_soon(do_request)
            await handler_entered.wait()
            with anyio.fail_after(2):
                await server.stop()

        assert len(failures) == 1
        assert await is_port_available(port) is True


@pytest.mark.anyio
async def test_stop_is_idempotent_and_start_twice_fails():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router())
        await server.stop()  # never started: no-op

        await server.start(tg)
        with pytest.raises(RuntimeError, match="already started"):
            await server.start(tg)

        await server.stop()
        await server.stop()


@pytest.mark.anyio
async def test_oversized_body_is_rejected_before_reading_it():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router(), max_body_bytes=16)
        await server.start(tg)

        stream = await anyio.connect_tcp("127.0.0.1", server.port)
        async with stream:
            await stream.send(
                b"POST /echo HTTP/1.1\r\nhost: localhost\r\ncontent-length: 1000\r\n\r\n"
            )
            reply = bytearray()
            while True:
                try:
                    reply.extend(await stream.receive())
                except anyio.EndOfStream:
                    break

        assert reply.startswith(b"HTTP/1.1 413 Payload Too Large\r\n")
        await server.stop()


@pytest.mark.anyio
async def test_body_sent_with_headers_in_one_write_is_kept():
    async with anyio.create_task_group() as tg:
        server = HttpServer(router=make_router())
        await server.start(tg)

        body = b'{"port":8787,"mode":"local"}'
        stream = await anyio.connect_tcp("127.0.0.1", server.port)
        async with stream:
            await stream.send(
                b"POST /parse HTTP/1.1\r\nhost: localhost\r\n"
                b"content-type: application/json\r\n"
                + f"content-length: {len(body)}\r\n\r\n".encode("ascii")
                + body
            )
            reply = bytearray()
            while True:
                try:
                    reply.extend(await stream.receive())
                except anyio.EndOfStream:
                    break

        head, _, payload = bytes(reply).partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200 OK\r\n")
        assert payload == body
        await server.stop()
