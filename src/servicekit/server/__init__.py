"""HTTP server host and middleware."""

from servicekit.server.host import ServerHost, SocketState
from servicekit.server.middleware import compression_middleware, request_logging_middleware

__all__ = [
    "ServerHost",
    "SocketState",
    "compression_middleware",
    "request_logging_middleware",
]
