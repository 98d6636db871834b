"""Error taxonomy for service startup, runtime and shutdown."""

from typing import Optional


class ServiceKitError(Exception):
    """Base class for all servicekit errors."""


class ConfigurationError(ServiceKitError):
    """A required setting is missing or a value is malformed."""


class DatabaseConnectionError(ServiceKitError):
    """The database is unreachable or rejected the connection."""


class PoolStateError(ServiceKitError):
    """A pool operation was attempted in the wrong lifecycle state."""


class PoolNotConnectedError(PoolStateError):
    """A query was attempted while the pool is not connected."""

    def __init__(self, message: str = "database pool is not connected"):
        super().__init__(message)


class BindError(ServiceKitError):
    """The HTTP server could not bind its listening socket."""


class StartupError(ServiceKitError):
    """Startup aborted at a named step.

    Args:
        step: Name of the startup step that failed
        cause: The underlying exception
    """

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        message = f"Startup failed during {step}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StartupInterrupted(ServiceKitError):
    """A shutdown signal arrived before startup finished."""

    def __init__(self, message: str = "shutdown requested during startup"):
        super().__init__(message)
