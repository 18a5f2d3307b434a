"""asyncpg pool shared by the messaging repositories."""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from carechat.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def init_pool() -> Optional[asyncpg.Pool]:
	"""Open the pool once; later calls return the existing one."""
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
		)
		logger.info(
			"postgres_pool_opened",
			extra={"min_size": settings.postgres_min_pool_size, "max_size": settings.postgres_max_pool_size},
		)
	return _pool


async def get_pool() -> asyncpg.Pool:
	"""Return the pool, opening it on demand.

	Raises AssertionError when no pool could be set up (tests disable it) and
	OSError/asyncpg errors when the server is unreachable; repositories treat
	either as "use the in-memory store".
	"""
	if _pool is None:
		await init_pool()
	assert _pool is not None, "postgres pool unavailable"
	return _pool


def set_pool(pool: Optional[asyncpg.Pool]) -> None:
	global _pool
	_pool = pool


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is not None:
		await pool.close()
		logger.info("postgres_pool_closed")
