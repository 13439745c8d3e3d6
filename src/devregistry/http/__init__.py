"""HTTP plumbing for the registry.

A small HTTP/1.1 server implemented with AnyIO sockets, shared by the
registry server and the hand-off receiver.
"""

from .server import HttpRequest, HttpResponse, HttpRouter, HttpServer

__all__ = [
    "HttpRequest",
    "HttpResponse",
    "HttpRouter",
    "HttpServer",
]
