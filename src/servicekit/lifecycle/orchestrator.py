"""Process lifecycle orchestration.

Startup runs strictly in dependency order:

    config -> logger -> database pool -> HTTP server

and teardown in reverse (server drain -> pool disconnect -> log flush),
triggered by SIGINT/SIGTERM. Signal handlers are live from the first
startup step, so an interrupt during startup aborts it once the step in
progress finishes. Any startup failure releases what was already acquired
and surfaces as StartupError; teardown is best-effort and reports failures
through the exit status.
"""

import asyncio
import logging
import signal
from enum import Enum
from typing import Callable, List, Optional, Tuple

from servicekit.config.settings import AppConfig, load_config
from servicekit.db.pool import PoolManager
from servicekit.errors import StartupError, StartupInterrupted
from servicekit.logs.setup import flush_logging, release_buffer, setup_logging
from servicekit.server.host import ServerHost

ConfigLoader = Callable[[], AppConfig]
LoggerFactory = Callable[[AppConfig], logging.Logger]
PoolManagerFactory = Callable[[AppConfig, logging.Logger], PoolManager]
ServerHostFactory = Callable[[AppConfig, logging.Logger], ServerHost]

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleState(str, Enum):
    """Process-wide lifecycle states."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Orchestrator:
    """Composition root: builds every component and owns their lifecycles.

    Factories default to the real components and can be swapped in tests.
    """

    def __init__(
        self,
        config_loader: ConfigLoader = load_config,
        logger_factory: LoggerFactory = setup_logging,
        pool_factory: PoolManagerFactory = PoolManager.from_config,
        server_factory: ServerHostFactory = ServerHost.from_config,
    ):
        self._config_loader = config_loader
        self._logger_factory = logger_factory
        self._pool_factory = pool_factory
        self._server_factory = server_factory

        self.config: Optional[AppConfig] = None
        self.logger: Optional[logging.Logger] = None
        self.pool: Optional[PoolManager] = None
        self.server: Optional[ServerHost] = None

        self._state = LifecycleState.CREATED
        self._shutdown_requested = asyncio.Event()
        self._stop_task: Optional[asyncio.Task] = None
        self._installed_signals: List[signal.Signals] = []
        self._shutdown_errors: List[Tuple[str, BaseException]] = []
        self._exit_code: Optional[int] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status once stopped, None before that."""
        return self._exit_code

    @property
    def shutdown_errors(self) -> List[Tuple[str, BaseException]]:
        """(step, error) pairs collected during teardown."""
        return list(self._shutdown_errors)

    async def start(self) -> None:
        """
        Bring every component up, one step at a time.

        Raises:
            StartupError: If any step fails; already-acquired resources are
                released before it is raised
        """
        if self._state is not LifecycleState.CREATED:
            raise RuntimeError(f"Cannot start: orchestrator is {self._state.value}")
        self._state = LifecycleState.STARTING
        self.install_signal_handlers()

        step = "config"
        try:
            self.config = self._config_loader()
            self._raise_if_interrupted()

            step = "logging"
            self.logger = self._logger_factory(self.config)
            self.logger.debug(
                "Configuration loaded",
                extra={"env": self.config.env, "port": self.config.port},
            )
            self._raise_if_interrupted()

            step = "database"
            self.pool = self._pool_factory(self.config, self.logger)
            await self.pool.connect()
            self._raise_if_interrupted()

            step = "server"
            self.server = self._server_factory(self.config, self.logger)
            self.server.configure_middleware()
            await self.server.listen(self.config.port)
            self._raise_if_interrupted()
        except Exception as e:
            await self._abort_startup(step, e)
            raise StartupError(step, e) from e
        except BaseException as e:
            # Cancellation or KeyboardInterrupt: release resources, then let it propagate.
            await self._abort_startup(step, e)
            raise

        self._state = LifecycleState.RUNNING
        release_buffer(self.logger)
        self.logger.debug("Service started", extra={"env": self.config.env})

    def _raise_if_interrupted(self) -> None:
        if self._shutdown_requested.is_set():
            raise StartupInterrupted()

    async def _abort_startup(self, step: str, error: BaseException) -> None:
        """Log the fatal cause and release whatever startup acquired."""
        logger = self.logger or logging.getLogger(__name__)
        reason = str(error) or type(error).__name__
        logger.critical(f"Startup failed during {step}: {reason}", extra={"step": step})

        if self.server is not None:
            try:
                await self.server.shutdown()
            except Exception:
                logger.exception("Failed to close server after startup failure")
        if self.pool is not None and self.pool.is_connected:
            try:
                await self.pool.disconnect()
            except Exception:
                logger.exception("Failed to disconnect database after startup failure")
        if self.logger is not None:
            flush_logging(self.logger)

        self.remove_signal_handlers()
        self._exit_code = 1
        self._state = LifecycleState.STOPPED

    def request_shutdown(self, sig: Optional[int] = None) -> None:
        """
        Ask the service to stop.

        While STARTING, startup aborts after the step in progress. While
        RUNNING, teardown begins. Only the first request counts; later ones
        (a second Ctrl-C, SIGTERM during teardown) are ignored.

        Args:
            sig: Signal number that triggered the request, if any
        """
        name = signal.Signals(sig).name if sig is not None else "shutdown request"
        accepting = self._state in (LifecycleState.STARTING, LifecycleState.RUNNING)
        if not accepting or self._shutdown_requested.is_set():
            if self.logger is not None:
                self.logger.debug(
                    f"Ignoring {name}: shutdown already in progress",
                    extra={"state": self._state.value},
                )
            return

        logger = self.logger or logging.getLogger(__name__)
        if self._state is LifecycleState.STARTING:
            logger.warning(f"Received {name} during startup, aborting")
        else:
            logger.info(f"Received {name}, shutting down")
        self._shutdown_requested.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to request_shutdown()."""
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                # Signal handlers are unavailable on Windows loops and off the main thread.
                if self.logger is not None:
                    self.logger.warning(f"Cannot install handler for {sig.name}")
                continue
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        while self._installed_signals:
            loop.remove_signal_handler(self._installed_signals.pop())

    async def stop(self) -> int:
        """
        Tear the service down in reverse dependency order.

        Concurrent and repeated calls share the same teardown run.

        Returns:
            0 if every step succeeded, 1 otherwise
        """
        if self._stop_task is None:
            if self._state in (LifecycleState.CREATED, LifecycleState.STOPPED):
                # Never started, or startup already cleaned up after itself.
                if self._exit_code is None:
                    self._exit_code = 0
                self._state = LifecycleState.STOPPED
                return self._exit_code
            self._stop_task = asyncio.ensure_future(self._teardown())
        return await asyncio.shield(self._stop_task)

    async def _teardown(self) -> int:
        self._state = LifecycleState.STOPPING
        logger = self.logger or logging.getLogger(__name__)
        logger.info("Stopping service")

        steps = (
            ("server", self._stop_server),
            ("database", self._stop_pool),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                self._shutdown_errors.append((name, e))
                logger.error(
                    f"Shutdown step '{name}' failed: {e}",
                    exc_info=True,
                    extra={"step": name},
                )

        exit_code = 1 if self._shutdown_errors else 0
        logger.info("Service stopped", extra={"exit_code": exit_code})

        if self.logger is not None:
            try:
                flush_logging(self.logger)
            except Exception as e:
                self._shutdown_errors.append(("logging", e))
                exit_code = 1

        # Removed last: a repeated signal during teardown must not fall back to the default action.
        self.remove_signal_handlers()
        self._exit_code = exit_code
        self._state = LifecycleState.STOPPED
        return exit_code

    async def _stop_server(self) -> None:
        if self.server is not None:
            await self.server.shutdown()

    async def _stop_pool(self) -> None:
        if self.pool is not None:
            await self.pool.disconnect()

    async def run(self) -> int:
        """
        Start, wait for a shutdown signal, then stop.

        Returns:
            Process exit status
        """
        try:
            await self.start()
        except StartupError:
            return 1

        try:
            await self._shutdown_requested.wait()
        finally:
            exit_code = await self.stop()
        return exit_code
