"""Message lifecycle: send, edit, soft delete, hide, and attachment handshakes."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import ulid

from carechat.domain.messaging import attachments, models, outbox, policy, schemas
from carechat.domain.messaging.exceptions import Blocked, Conflict, NotFound, ValidationFailed
from carechat.domain.messaging.membership import MembershipService
from carechat.infra.object_store import DownloadTarget, ObjectStore, get_object_store
from carechat.obs import metrics as obs_metrics
from carechat.settings import settings


class MessageService:
	def __init__(
		self,
		*,
		membership: MembershipService | None = None,
		object_store: ObjectStore | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._membership = membership or MembershipService(clock=clock)
		self._repo = self._membership.repository
		self._object_store = object_store
		self._clock = clock or models.utcnow

	@property
	def object_store(self) -> ObjectStore:
		return self._object_store or get_object_store()

	async def _require_message(self, message_id: str) -> models.Message:
		message = await self._repo.get_message(message_id)
		if message is None:
			raise NotFound("message_not_found", "Message not found")
		return message

	async def _require_attachment(self, attachment_id: str) -> tuple[models.Attachment, models.Message]:
		attachment = await self._repo.get_attachment(attachment_id)
		if attachment is None:
			raise NotFound("attachment_not_found", "Attachment not found")
		message = await self._require_message(attachment.message_id)
		return attachment, message

	async def _ensure_not_blocked(self, thread: models.Thread, sender_id: str) -> None:
		if not thread.is_direct() or not settings.block_gates_direct_sends:
			return
		members = await self._repo.list_members(thread.id)
		for member in members:
			if member.user_id != sender_id and await self._repo.block_exists_between(sender_id, member.user_id):
				raise Blocked()

	async def send(
		self,
		user_id: str,
		thread_id: str,
		payload: schemas.SendMessageRequest,
	) -> schemas.SendMessageResponse:
		"""Persist a message and hand back signed upload targets for its attachments.

		Every check runs before any write. Upload targets are issued before the
		message row exists, so a storage failure leaves nothing behind; the
		message and its attachment rows are then written together.
		"""
		thread, _ = await self._membership.require_thread_member(thread_id, user_id)
		content = (payload.content or "").strip() or None
		declarations = list(payload.attachments)
		if content is None and not declarations:
			raise ValidationFailed("nothing_to_send", "Write a message or attach a file")
		if content is not None:
			policy.ensure_content_length(content)
		attachments.validate_declarations(declarations)
		if payload.reply_to_message_id:
			target = await self._repo.get_message(payload.reply_to_message_id)
			if target is None or target.thread_id != thread.id:
				raise ValidationFailed("invalid_reply", "Replies must target a message in this thread")
		await self._ensure_not_blocked(thread, user_id)
		await policy.enforce_send_limit(user_id)

		now = self._clock()
		message_id = str(ulid.new())
		rows, uploads = await attachments.reserve(
			self.object_store,
			thread_id=thread.id,
			message_id=message_id,
			declarations=declarations,
			now=now,
		)
		message = models.Message(
			id=message_id,
			thread_id=thread.id,
			sender_id=user_id,
			content=content,
			kind=attachments.derive_kind([d.mime_type for d in declarations]),
			created_at=now,
			reply_to_message_id=payload.reply_to_message_id or None,
		)
		await self._repo.create_message(message, rows)
		obs_metrics.inc_message_sent(message.kind)
		obs_metrics.inc_upload("reserved", len(rows))
		await outbox.append_event(
			"message_created",
			thread_id=thread.id,
			user_id=user_id,
			message_id=message.id,
			meta={"kind": message.kind, "attachments": len(rows)},
		)
		return schemas.SendMessageResponse(message_id=message.id, pending_uploads=uploads)

	async def edit(self, user_id: str, message_id: str, new_content: str) -> models.Message:
		message = await self._require_message(message_id)
		policy.ensure_sender(message, user_id)
		if message.is_deleted:
			raise Conflict("already_deleted", "Deleted messages cannot be edited")
		now = self._clock()
		policy.ensure_within_edit_window(message, now)
		content = (new_content or "").strip()
		if not content:
			raise ValidationFailed("empty_content", "Message content cannot be empty")
		policy.ensure_content_length(content)
		updated = await self._repo.update_content(message.id, content, now)
		if updated is None:
			raise NotFound("message_not_found", "Message not found")
		obs_metrics.inc_message_mutation("edit")
		await outbox.append_event("message_edited", thread_id=message.thread_id, user_id=user_id, message_id=message.id)
		return updated

	async def soft_delete(self, user_id: str, message_id: str) -> models.Message:
		message = await self._require_message(message_id)
		policy.ensure_sender(message, user_id)
		if message.is_deleted:
			return message
		deleted = await self._repo.soft_delete(message.id, self._clock())
		if deleted is None:
			raise NotFound("message_not_found", "Message not found")
		obs_metrics.inc_message_mutation("soft_delete")
		await outbox.append_event("message_deleted", thread_id=message.thread_id, user_id=user_id, message_id=message.id)
		return deleted

	async def hide_for_me(self, user_id: str, message_id: str) -> None:
		message = await self._require_message(message_id)
		await self._membership.require_member(message.thread_id, user_id)
		await self._repo.hide_message(user_id, message.id)
		obs_metrics.inc_message_mutation("hide")

	async def confirm_upload(self, user_id: str, attachment_id: str, size_bytes: int) -> models.Attachment:
		attachment, message = await self._require_attachment(attachment_id)
		policy.ensure_sender(message, user_id)
		policy.ensure_attachment_size(size_bytes)
		if size_bytes < 1:
			raise ValidationFailed("invalid_size", "Uploaded files cannot be empty")
		confirmed = await self._repo.confirm_attachment(attachment.id, size_bytes, self._clock())
		if confirmed is None:
			raise NotFound("attachment_not_found", "Attachment not found")
		obs_metrics.inc_upload("confirmed")
		return confirmed

	async def get_download_url(self, user_id: str, attachment_id: str, *, ttl_seconds: Optional[int] = None) -> DownloadTarget:
		attachment, message = await self._require_attachment(attachment_id)
		await self._membership.require_member(message.thread_id, user_id)
		ttl = ttl_seconds or settings.storage_download_ttl_seconds
		return await self.object_store.create_download_target(attachment.storage_path, ttl)
