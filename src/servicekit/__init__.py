"""Startup and shutdown orchestration for an aiohttp + asyncpg service."""

__version__ = "0.1.0"
