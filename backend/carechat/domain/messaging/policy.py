"""Policy helpers for threads and messages."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from redis.exceptions import RedisError

from carechat.domain.messaging import models
from carechat.domain.messaging.exceptions import (
	Expired,
	FileTooLarge,
	Forbidden,
	NotAMember,
	RateLimited,
	ValidationFailed,
)
from carechat.infra import rate_limit
from carechat.settings import settings

MAX_ATTACHMENT_BYTES = 15 * 1024 * 1024
MAX_ATTACHMENTS = 10
TEXT_MAX_LEN = 4000
TITLE_MAX_LEN = 120
GROUP_MIN_MEMBERS = 3
EDIT_WINDOW = timedelta(minutes=60)
PAGE_DEFAULT = 40
PAGE_MAX = 80
SEARCH_LIMIT = 50
INFO_ATTACHMENTS_LIMIT = 30
INFO_PINS_LIMIT = 20
DIRECTORY_SEARCH_LIMIT = 25
PROFESSIONAL_ENTITY_TYPES = ("doctor", "pharmacy", "laboratory", "clinic", "business", "admin")
PATIENT_ENTITY_TYPE = "patient"
STATUS_MESSAGE_MAX_LEN = 140

logger = logging.getLogger(__name__)


def ensure_member(member: Optional[models.ThreadMember]) -> models.ThreadMember:
	if member is None:
		raise NotAMember()
	return member


def ensure_sender(message: models.Message, user_id: str) -> None:
	if message.sender_id != user_id:
		raise Forbidden("forbidden", "Only the sender can change this message")


def ensure_within_edit_window(message: models.Message, now: datetime) -> None:
	if now - message.created_at > EDIT_WINDOW:
		raise Expired()


def ensure_content_length(content: str) -> None:
	if len(content) > TEXT_MAX_LEN:
		raise ValidationFailed("content_too_long", f"Messages are limited to {TEXT_MAX_LEN} characters")


def ensure_attachment_size(size_bytes: Optional[int]) -> None:
	if size_bytes is not None and size_bytes > MAX_ATTACHMENT_BYTES:
		raise FileTooLarge()


async def enforce_send_limit(user_id: str) -> None:
	"""Fixed-window per-sender budget; a redis outage lets the send through."""
	try:
		allowed = await rate_limit.allow(
			"msg:send",
			user_id,
			limit=settings.send_rate_limit_per_minute,
			window_seconds=60,
		)
	except (RedisError, OSError):
		logger.warning("rate_limit_unavailable", extra={"user_id": user_id}, exc_info=True)
		return
	if not allowed:
		raise RateLimited()
