"""Membership and moderation: mute, leave, block, pins and reports."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from carechat.domain.messaging import models, outbox, policy
from carechat.domain.messaging.exceptions import Conflict, NotFound, ValidationFailed
from carechat.domain.messaging.repo import MessagingRepository
from carechat.obs import metrics as obs_metrics

PIN_THREAD = "thread"
PIN_MESSAGE = "message"

logger = logging.getLogger(__name__)


class MembershipService:
	def __init__(
		self,
		*,
		repository: MessagingRepository | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._repo = repository or MessagingRepository()
		self._clock = clock or models.utcnow

	@property
	def repository(self) -> MessagingRepository:
		return self._repo

	async def require_thread(self, thread_id: str) -> models.Thread:
		thread = await self._repo.get_thread(thread_id)
		if thread is None:
			raise NotFound("thread_not_found", "Thread not found")
		return thread

	async def require_member(self, thread_id: str, user_id: str) -> models.ThreadMember:
		member = await self._repo.get_member(thread_id, user_id)
		return policy.ensure_member(member)

	async def require_thread_member(self, thread_id: str, user_id: str) -> tuple[models.Thread, models.ThreadMember]:
		thread = await self.require_thread(thread_id)
		member = await self.require_member(thread_id, user_id)
		return thread, member

	async def set_muted(self, user_id: str, thread_id: str, muted: bool) -> bool:
		await self.require_thread_member(thread_id, user_id)
		await self._repo.set_muted(thread_id, user_id, muted)
		obs_metrics.inc_toggle("mute", muted)
		return muted

	async def leave(self, user_id: str, thread_id: str) -> None:
		thread = await self.require_thread(thread_id)
		if thread.is_direct():
			raise Conflict("cannot_leave_direct", "Direct conversations cannot be left")
		await self.require_member(thread_id, user_id)
		await self._repo.remove_member(thread_id, user_id)
		await outbox.append_event("member_left", thread_id=thread_id, user_id=user_id)

	async def toggle_block(self, user_id: str, other_id: str) -> bool:
		other_id = (other_id or "").strip()
		if not other_id:
			raise ValidationFailed("missing_user", "A user id is required")
		if other_id == user_id:
			raise ValidationFailed("cannot_block_self", "You cannot block yourself")
		blocked = await self._repo.toggle_block(user_id, other_id, self._clock())
		obs_metrics.inc_toggle("block", blocked)
		await outbox.append_event(
			"user_blocked" if blocked else "user_unblocked",
			user_id=user_id,
			meta={"target_id": other_id},
		)
		return blocked

	async def toggle_pin(
		self,
		kind: str,
		user_id: str,
		thread_id: str,
		message_id: Optional[str] = None,
	) -> bool:
		await self.require_thread_member(thread_id, user_id)
		now = self._clock()
		if kind == PIN_THREAD:
			pinned = await self._repo.toggle_pinned_thread(user_id, thread_id, now)
		elif kind == PIN_MESSAGE:
			if not message_id:
				raise ValidationFailed("missing_message_id", "A message id is required")
			message = await self._repo.get_message(message_id)
			if message is None or message.thread_id != thread_id:
				raise NotFound("message_not_found", "Message not found in this thread")
			pinned = await self._repo.toggle_pinned_message(user_id, thread_id, message_id, now)
		else:
			raise ValidationFailed("invalid_pin_kind", "Unknown pin target")
		obs_metrics.inc_toggle(f"pin_{kind}", pinned)
		return pinned

	async def report(
		self,
		user_id: str,
		other_id: str,
		*,
		reason: Optional[str] = None,
		message_id: Optional[str] = None,
	) -> None:
		other_id = (other_id or "").strip()
		if not other_id:
			raise ValidationFailed("missing_user", "A user id is required")
		if other_id == user_id:
			raise ValidationFailed("cannot_report_self", "You cannot report yourself")
		logger.warning(
			"user_reported",
			extra={"reporter_id": user_id, "reported_id": other_id, "message_id": message_id, "reason": reason},
		)
		await outbox.append_event(
			"user_reported",
			user_id=user_id,
			message_id=message_id,
			meta={"reported_id": other_id, "reason": (reason or "").strip()[:1000] or None},
		)
