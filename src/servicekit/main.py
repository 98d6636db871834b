"""Service entry point."""

import asyncio
import logging
import sys

from servicekit.lifecycle import LifecycleState, Orchestrator


def main() -> None:
    """Run the service until SIGINT/SIGTERM and exit with its status."""
    orchestrator = Orchestrator()
    try:
        exit_code = asyncio.run(orchestrator.run())
    except (KeyboardInterrupt, asyncio.CancelledError):
        # Signal handlers unsupported on this loop, or the run was cancelled.
        logging.getLogger(__name__).warning("Interrupted by user")
        clean = orchestrator.state is LifecycleState.STOPPED and orchestrator.exit_code == 0
        exit_code = 0 if clean else 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
