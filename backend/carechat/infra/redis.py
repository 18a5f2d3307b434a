"""Shared redis connection for send budgets and the event outbox.

Callers import ``redis_client`` once. The connection behind it is opened on
first use and can be swapped (fakeredis in tests) without re-importing.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from carechat.settings import settings


class RedisHandle:
	def __init__(self) -> None:
		self._client: Optional[redis.Redis] = None

	@property
	def client(self) -> Optional[redis.Redis]:
		return self._client

	def bind(self, client: Optional[redis.Redis]) -> None:
		self._client = client

	def connection(self) -> redis.Redis:
		if self._client is None:
			self._client = redis.from_url(settings.redis_url, decode_responses=True)
		return self._client

	def __getattr__(self, name: str):
		return getattr(self.connection(), name)


redis_client = RedisHandle()


def set_redis_client(client: Optional[redis.Redis]) -> None:
	redis_client.bind(client)


async def close_redis() -> None:
	client = redis_client.client
	if client is not None:
		redis_client.bind(None)
		await client.aclose()
