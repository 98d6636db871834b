"""HTTP server host: middleware wiring, socket binding and graceful shutdown."""

import logging
from enum import Enum
from typing import Iterable, Optional

from aiohttp import web

from servicekit.config.settings import AppConfig
from servicekit.errors import BindError
from servicekit.server.middleware import compression_middleware, request_logging_middleware


class SocketState(str, Enum):
    """Lifecycle states of the listening socket."""

    UNBOUND = "unbound"
    LISTENING = "listening"
    CLOSED = "closed"


class ServerHost:
    """Owns the aiohttp application and its listening socket.

    Route tables are the attachment point for request handlers; with none
    registered every path answers 404.
    """

    def __init__(
        self,
        logger: logging.Logger,
        host: str = "0.0.0.0",
        shutdown_timeout: float = 10.0,
        compression_min_size: int = 1024,
        routes: Iterable[web.AbstractRouteDef] = (),
    ):
        self._logger = logger
        self._host = host
        self._shutdown_timeout = shutdown_timeout
        self._compression_min_size = compression_min_size
        self._app = web.Application()
        self._app.add_routes(list(routes))
        self._middleware_configured = False
        self._runner: Optional[web.AppRunner] = None
        self._state = SocketState.UNBOUND
        self._port: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        logger: logging.Logger,
        routes: Iterable[web.AbstractRouteDef] = (),
    ) -> "ServerHost":
        """Build a host from the configuration snapshot."""
        return cls(
            logger,
            host=config.host,
            shutdown_timeout=config.shutdown_grace_seconds,
            compression_min_size=config.compression_min_size,
            routes=routes,
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def state(self) -> SocketState:
        return self._state

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually bound, or None before listen()."""
        return self._port

    def configure_middleware(self) -> None:
        """Install compression and request logging. Safe to call more than once."""
        if self._middleware_configured:
            return
        if self._app.frozen:
            raise RuntimeError("Middleware must be configured before the server starts")

        # Compression is outermost so it also sees the 500s produced by request logging.
        self._app.middlewares.append(compression_middleware(self._compression_min_size))
        self._app.middlewares.append(request_logging_middleware(self._logger))
        self._middleware_configured = True

    async def listen(self, port: int) -> int:
        """
        Bind the socket and start accepting connections.

        Args:
            port: TCP port to bind (0 picks a free one)

        Returns:
            The bound port

        Raises:
            BindError: If the port is in use or not permitted
        """
        if self._state is not SocketState.UNBOUND:
            raise RuntimeError(f"Cannot listen: server socket is {self._state.value}")

        runner = web.AppRunner(
            self._app,
            access_log=None,
            shutdown_timeout=self._shutdown_timeout,
        )
        await runner.setup()

        site = web.TCPSite(runner, self._host, port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise BindError(f"Could not bind {self._host}:{port}: {e}") from e

        addresses = runner.addresses
        self._port = addresses[0][1] if addresses else port
        self._runner = runner
        self._state = SocketState.LISTENING

        self._logger.info(
            f"Server running on port: {self._port}",
            extra={"host": self._host, "port": self._port},
        )
        return self._port

    async def shutdown(self) -> None:
        """
        Stop accepting connections and drain in-flight requests.

        Requests still running after the grace period are cancelled and
        their connections closed. Does nothing once closed.
        """
        if self._state is SocketState.CLOSED:
            return

        runner = self._runner
        self._runner = None
        self._state = SocketState.CLOSED
        if runner is None:
            return

        self._logger.info(
            "Server shutting down",
            extra={"grace_seconds": self._shutdown_timeout},
        )
        await runner.cleanup()
        self._logger.info("Server closed")
