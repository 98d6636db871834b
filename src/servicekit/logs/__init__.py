"""Process logger setup."""

from servicekit.logs.setup import (
    LOGGER_NAME,
    flush_logging,
    release_buffer,
    setup_logging,
)

__all__ = ["LOGGER_NAME", "setup_logging", "release_buffer", "flush_logging"]
