"""Database pool management."""

from servicekit.db.pool import PoolManager, PoolState

__all__ = ["PoolManager", "PoolState"]
