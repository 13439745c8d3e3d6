"""Tiny HTTP/1.1 server built on AnyIO.

Serves the registry and the hand-off receiver. Both are small JSON APIs on
loopback, so this stays minimal:

Features:
- HTTP/1.1 request line + headers parsing
- Optional Content-Length body (no chunked encoding)
- One request per connection (Connection: close)
- Route patterns with ``{name}`` path segments
- Graceful stop: stop accepting, drain in-flight requests for a bounded
  time, then release the listening socket
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import unquote, urlsplit

import anyio
from anyio.abc import SocketAttribute, SocketStream, TaskGroup


logger = logging.getLogger(__name__)

HeaderMap = dict[str, str]
Handler = Callable[["HttpRequest"], Awaitable["HttpResponse"]]


@dataclass(frozen=True, slots=True)
class HttpRequest:
    method: str
    path: str
    version: str
    headers: HeaderMap
    body: bytes
    params: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        """Decode the body as JSON. Raises ValueError on malformed input."""
        try:
            return json.loads(self.body.decode("utf-8") or "null")
        except UnicodeDecodeError as e:
            raise ValueError(f"invalid body encoding: {e}") from e


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int = 200
    headers: Mapping[str, str] | None = None
    body: bytes = b""

    @staticmethod
    def text(
        text: str,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        encoding: str = "utf-8",
    ) -> "HttpResponse":
        body = text.encode(encoding)
        merged: dict[str, str] = {"content-type": f"text/plain; charset={encoding}"}
        if headers:
            merged.update({k.lower(): v for k, v in headers.items()})
        return HttpResponse(status=status, headers=merged, body=body)

    @staticmethod
    def json(
        obj: Any,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> "HttpResponse":
        body = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        merged: dict[str, str] = {"content-type": "application/json; charset=utf-8"}
        if headers:
            merged.update({k.lower(): v for k, v in headers.items()})
        return HttpResponse(status=status, headers=merged, body=body)


_STATUS_TEXT: dict[int, str] = {
    200: "OK",
    204: "No Content",
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    500: "Internal Server Error",
}


def _status_line(status: int) -> str:
    text = _STATUS_TEXT.get(status, "OK")
    return f"HTTP/1.1 {status} {text}\r\n"


def _normalize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {k.lower(): v for k, v in headers.items()}


async def _read_until(stream: SocketStream, marker: bytes, max_bytes: int) -> tuple[bytes, bytes]:
    """Read through ``marker``. Returns (block up to and including marker, bytes read past it)."""
    buf = bytearray()
    while True:
        if len(buf) > max_bytes:
            raise ValueError("request too large")
        idx = buf.find(marker)
        if idx != -1:
            end = idx + len(marker)
            return bytes(buf[:end]), bytes(buf[end:])
        try:
            chunk = await stream.receive(4096)
        except anyio.EndOfStream:
            return bytes(buf), b""
        if not chunk:
            return bytes(buf), b""
        buf.extend(chunk)


def _parse_headers(block: bytes) -> tuple[str, str, str, HeaderMap]:
    # block contains request line + headers ending with \r\n\r\n
    head = block.decode("iso-8859-1")

    lines = head.split("\r\n")
    if not lines or not lines[0]:
        raise ValueError("missing request line")

    parts = lines[0].split(" ")
    if len(parts) != 3:
        raise ValueError("invalid request line")
    method, path, version = parts

    headers: HeaderMap = {}
    for line in lines[1:]:
        if line == "":
            break
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()
    return method, path, version, headers


async def _read_exact(stream: SocketStream, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = await stream.receive(n - len(buf))
        except anyio.EndOfStream:
            break
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf)


async def _write_response(stream: SocketStream, response: HttpResponse) -> None:
    headers = _normalize_headers(response.headers)
    body = response.body or b""

    headers.setdefault("content-length", str(len(body)))
    headers.setdefault("connection", "close")

    start = _status_line(response.status).encode("ascii")
    head = b"".join(f"{k}: {v}\r\n".encode("ascii") for k, v in headers.items())

    await stream.send(start + head + b"\r\n" + body)


def _match(pattern: tuple[str, ...], segments: list[str]) -> dict[str, str] | None:
    if len(pattern) != len(segments):
        return None
    params: dict[str, str] = {}
    for expected, actual in zip(pattern, segments):
        if expected.startswith("{") and expected.endswith("}"):
            if not actual:
                return None
            params[expected[1:-1]] = unquote(actual)
        elif expected != actual:
            return None
    return params


def _split_path(path: str) -> list[str]:
    path = urlsplit(path).path
    if path in ("", "/"):
        return []
    return path.strip("/").split("/")


class HttpRouter:
    """A very small router that dispatches (method, path pattern) to async handlers.

    Patterns are literal paths with optional ``{name}`` segments, e.g.
    ``/workers/{name}``. Captured segments are URL-decoded into
    ``request.params``.
    """

    def __init__(self, routes: Mapping[tuple[str, str], Handler] | None = None):
        self._routes: list[tuple[str, tuple[str, ...], Handler]] = []
        for (method, pattern), handler in (routes or {}).items():
            self.add(method, pattern, handler)

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append((method.upper(), tuple(_split_path(pattern)), handler))

    async def route(self, req: HttpRequest) -> HttpResponse:
        segments = _split_path(req.path)
        path_matched = False
        for method, pattern, handler in self._routes:
            params = _match(pattern, segments)
            if params is None:
                continue
            path_matched = True
            if method != req.method.upper():
                continue
            routed = HttpRequest(
                method=req.method,
                path=req.path,
                version=req.version,
                headers=req.headers,
                body=req.body,
                params=params,
            )
            try:
                return await handler(routed)
            except ValueError as e:
                return HttpResponse.text(f"bad request: {e}", status=400)
            except Exception as e:
                logger.exception("Handler for %s %s failed", req.method, req.path)
                return HttpResponse.text(f"handler error: {e!r}", status=500)
        if path_matched:
            return HttpResponse.text("method not allowed", status=405)
        return HttpResponse.text("not found", status=404)


class HttpServer:
    """HTTP server bound to one TCP port.

    - ``start()`` binds the listener and begins accepting in the given TaskGroup
    - each connection is handled in a child task and routed through an HttpRouter
    - ``stop()`` drains in-flight connections (bounded by ``drain_timeout``)
      before the listening socket is closed

    Pass ``port=0`` to bind an OS-chosen ephemeral port; the bound port is
    available as ``server.port`` once started.
    """

    def __init__(
        self,
        *,
        router: HttpRouter,
        host: str = "127.0.0.1",
        port: int = 0,
        max_header_bytes: int = 64 * 1024,
        max_body_bytes: int = 1 * 1024 * 1024,
        drain_timeout: float = 5.0,
    ):
        self._router = router
        self._host = host
        self._port = port
        self._max_header_bytes = max_header_bytes
        self._max_body_bytes = max_body_bytes
        self._drain_timeout = drain_timeout
        # anyio.create_tcp_listener() returns a MultiListener; keep it loosely typed.
        self._listener: Any = None
        self._accept_scope: anyio.CancelScope | None = None
        self._drain_scope: anyio.CancelScope | None = None
        self._stopped = anyio.Event()
        self._started = False

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def running(self) -> bool:
        return self._started and not self._stopped.is_set()

    async def start(self, task_group: TaskGroup) -> None:
        """Bind the listening socket and start serving.

        Raises OSError when the address cannot be bound (e.g. EADDRINUSE).
        """
        if self._started:
            raise RuntimeError("HttpServer already started")
        self._listener = await anyio.create_tcp_listener(
            local_host=self._host, local_port=self._port
        )
        self._port = self._listener.extra(SocketAttribute.local_port)
        self._started = True
        await task_group.start(self._serve_loop)

    async def _serve_loop(self, *, task_status=anyio.TASK_STATUS_IGNORED) -> None:
        """
        Serve incoming connections until stop() is called.

        Nesting order matters: the accept loop is cancelled first, then the
        connection task group waits for in-flight requests (under the drain
        scope's deadline), and only then is the listener closed.
        """
        try:
            async with self._listener:
                with anyio.CancelScope() as drain_scope:
                    self._drain_scope = drain_scope
                    async with anyio.create_task_group() as connections:
                        with anyio.CancelScope() as accept_scope:
                            self._accept_scope = accept_scope
                            task_status.started()
                            await self._listener.serve(self._handle_client, task_group=connections)
        finally:
            self._stopped.set()
            logger.debug("HTTP server on %s:%s closed", self._host, self._port)

    async def stop(self) -> None:
        """Stop accepting, drain in-flight requests, release the port."""
        if not self._started or self._stopped.is_set():
            return
        assert self._accept_scope is not None
        assert self._drain_scope is not None
        self._drain_scope.deadline = anyio.current_time() + self._drain_timeout
        self._accept_scope.cancel()
        await self._stopped.wait()

    async def _handle_client(self, stream: SocketStream) -> None:
        async with stream:
            try:
                header_block, leftover = await _read_until(stream, b"\r\n\r\n", self._max_header_bytes)
                if not header_block:
                    return

                method, path, version, headers = _parse_headers(header_block)
                content_length = int(headers.get("content-length", "0") or "0")
                if content_length > self._max_body_bytes:
                    await _write_response(stream, HttpResponse.text("payload too large", status=413))
                    return

                # The body often arrives in the same chunk as the headers.
                body = leftover[:content_length]
                if len(body) < content_length:
                    body += await _read_exact(stream, content_length - len(body))

                req = HttpRequest(
                    method=method,
                    path=path,
                    version=version,
                    headers=headers,
                    body=body,
                )
                resp = await self._router.route(req)
                await _write_response(stream, resp)
            except ValueError as e:
                await _write_response(stream, HttpResponse.text(f"bad request: {e}", status=400))
            except (anyio.BrokenResourceError, anyio.ClosedResourceError, ConnectionError):
                logger.debug("Client on %s:%s went away mid-request", self._host, self._port)
