"""Outbox helpers for messaging events.

Events go to a redis stream read by notification workers. Appends are best
effort: the write they describe is already committed.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from redis.exceptions import RedisError

from carechat.infra.redis import redis_client

MESSAGING_STREAM = "x:messaging.events"
STREAM_MAXLEN = 100_000

logger = logging.getLogger(__name__)


async def append_event(
	event: str,
	*,
	thread_id: Optional[str] = None,
	user_id: Optional[str] = None,
	message_id: Optional[str] = None,
	meta: Mapping[str, Any] | None = None,
) -> None:
	fields: dict[str, Any] = {"event": event}
	if thread_id:
		fields["thread_id"] = str(thread_id)
	if user_id:
		fields["user_id"] = str(user_id)
	if message_id:
		fields["message_id"] = str(message_id)
	if meta:
		for key, value in meta.items():
			if value is not None:
				fields[f"meta_{key}"] = str(value)
	try:
		await redis_client.xadd(MESSAGING_STREAM, fields, maxlen=STREAM_MAXLEN, approximate=True)
	except (RedisError, OSError):
		logger.warning("outbox_append_failed", extra={"event": event, "thread_id": thread_id}, exc_info=True)
