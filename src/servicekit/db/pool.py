"""Database connection pool lifecycle management."""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Callable, List, Optional

import asyncpg

from servicekit.config.settings import AppConfig
from servicekit.errors import (
    DatabaseConnectionError,
    PoolNotConnectedError,
    PoolStateError,
)

PoolFactory = Callable[..., asyncpg.Pool]


class PoolState(str, Enum):
    """Lifecycle states of the managed pool."""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class PoolManager:
    """Owns the process's single asyncpg connection pool.

    The pool is opened once by ``connect()`` and released once by
    ``disconnect()``. Queries are only accepted in between.
    """

    def __init__(
        self,
        dsn: str,
        logger: logging.Logger,
        min_size: int = 1,
        max_size: int = 10,
        connect_timeout: float = 5.0,
        close_timeout: float = 5.0,
        pool_factory: Optional[PoolFactory] = None,
    ):
        self._dsn = dsn
        self._logger = logger
        self._min_size = min_size
        self._max_size = max_size
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pool: Optional[asyncpg.Pool] = None
        self._state = PoolState.UNINITIALIZED

    @classmethod
    def from_config(cls, config: AppConfig, logger: logging.Logger) -> "PoolManager":
        """Build a manager from the configuration snapshot."""
        return cls(
            config.dsn,
            logger,
            min_size=config.db_pool_min,
            max_size=config.db_pool_max,
            connect_timeout=config.db_connect_timeout,
            close_timeout=config.db_close_timeout,
        )

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is PoolState.CONNECTED

    @property
    def pool(self) -> asyncpg.Pool:
        """The live pool.

        Raises:
            PoolNotConnectedError: If the pool is not connected
        """
        if self._state is not PoolState.CONNECTED or self._pool is None:
            raise PoolNotConnectedError()
        return self._pool

    async def connect(self) -> None:
        """
        Open the pool and verify it with a health check.

        A second call while connected does nothing. On failure the manager
        stays uninitialized and no pool is kept.

        Raises:
            DatabaseConnectionError: If the database is unreachable, rejects
                the credentials, or fails the health check
            PoolStateError: If the pool was already disconnected
        """
        if self._state is PoolState.CONNECTED:
            return
        if self._state is PoolState.DISCONNECTED:
            raise PoolStateError("database pool was disconnected and cannot reconnect")

        try:
            pool = self._pool_factory(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
            )
        except (OSError, ValueError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e

        # The pool exists before its connections do; terminate it on any failure.
        try:
            await asyncio.wait_for(pool, timeout=self._connect_timeout)
        except asyncio.TimeoutError as e:
            self._discard(pool)
            raise DatabaseConnectionError(
                f"Database connection timed out after {self._connect_timeout} seconds"
            ) from e
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self._discard(pool)
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e
        except BaseException:
            self._discard(pool)
            raise

        # Health check
        try:
            async with pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
            if result != 1:
                raise RuntimeError(f"expected 1, got {result}")
        except Exception as e:
            self._discard(pool)
            raise DatabaseConnectionError(f"Database health check failed: {e}") from e
        except BaseException:
            self._discard(pool)
            raise

        self._pool = pool
        self._state = PoolState.CONNECTED
        self._logger.info(
            "Prisma connected",
            extra={"pool_min": self._min_size, "pool_max": self._max_size},
        )

    def _discard(self, pool: asyncpg.Pool) -> None:
        """Terminate a pool that never became usable."""
        try:
            pool.terminate()
        except asyncpg.InterfaceError as e:
            self._logger.debug(f"Could not terminate half-open pool: {e}")

    async def disconnect(self) -> None:
        """
        Close the pool and release every connection.

        Attempts a graceful close bounded by the close timeout and terminates
        the pool if that times out (e.g. a leaked connection). Does nothing
        unless the pool is connected. The state becomes DISCONNECTED even if
        closing raises; the error is passed on to the caller.
        """
        if self._state is not PoolState.CONNECTED:
            self._logger.debug(
                "Database disconnect skipped", extra={"pool_state": self._state.value}
            )
            return

        pool = self._pool
        self._state = PoolState.DISCONNECTED
        self._pool = None
        try:
            await asyncio.wait_for(pool.close(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                f"Pool close timed out after {self._close_timeout} seconds. "
                "Forcing termination (likely leaked connection)."
            )
            pool.terminate()
        self._logger.info("Prisma disconnected")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Check a connection out of the pool for the duration of the block."""
        async with self.pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args: Any) -> str:
        return await self.pool.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        return await self.pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self.pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self.pool.fetchval(query, *args)
