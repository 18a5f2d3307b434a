"""Fixed-window counters in redis."""

from __future__ import annotations

import time
from typing import Optional

from carechat.infra.redis import redis_client


def window_key(kind: str, actor_id: str, window_seconds: int, now: float) -> str:
	bucket = int(now // window_seconds)
	return f"rl:{kind}:{actor_id}:{window_seconds}:{bucket}"


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Count one hit for ``actor_id`` and report whether it fits in ``limit`` for the current window.

	Redis errors propagate; callers decide whether to fail open.
	"""
	if limit <= 0:
		return False
	window_seconds = max(1, int(window_seconds))
	key = window_key(kind, actor_id, window_seconds, time.time() if now is None else now)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window_seconds * 2)
		hits, _ = await pipe.execute()
	return int(hits) <= limit
