"""Read side: thread list, paged history, thread info and search."""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import List, Optional

from carechat.domain.messaging import models, policy, schemas
from carechat.domain.messaging.directory import Directory, get_directory, lookup_profiles
from carechat.domain.messaging.exceptions import ValidationFailed
from carechat.domain.messaging.membership import MembershipService
from carechat.domain.messaging.repo import Cursor
from carechat.domain.messaging.search import ThreadSearch, get_thread_search


def encode_cursor(created_at: datetime, message_id: str) -> str:
	payload = {"t": created_at.isoformat(), "id": message_id}
	return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(value: Optional[str]) -> Optional[Cursor]:
	if not value:
		return None
	try:
		data = json.loads(base64.urlsafe_b64decode(value.encode()).decode())
		return (datetime.fromisoformat(data["t"]), str(data["id"]))
	except (binascii.Error, ValueError, KeyError, TypeError):
		raise ValidationFailed("invalid_cursor", "Cursor is malformed") from None


def _message_dto(message: models.Message) -> schemas.MessageDTO:
	return schemas.MessageDTO(**message.to_dict())


def _clamp_limit(limit: Optional[int]) -> int:
	if limit is None:
		return policy.PAGE_DEFAULT
	return max(1, min(int(limit), policy.PAGE_MAX))


class HistoryService:
	def __init__(
		self,
		*,
		membership: MembershipService | None = None,
		directory: Directory | None = None,
		search: ThreadSearch | None = None,
	) -> None:
		self._membership = membership or MembershipService()
		self._repo = self._membership.repository
		self._directory = directory
		self._search = search

	@property
	def directory(self) -> Directory:
		return self._directory or get_directory()

	async def list_threads(self, user_id: str) -> List[schemas.ThreadSummaryDTO]:
		summaries = await self._repo.thread_summaries(user_id)
		counterparts = {
			summary.thread.id: next((uid for uid in summary.member_ids if uid != user_id), None)
			for summary in summaries
			if summary.thread.is_direct()
		}
		profiles = await lookup_profiles(self.directory, [uid for uid in counterparts.values() if uid])
		for summary in summaries:
			if summary.thread.is_direct():
				other = counterparts.get(summary.thread.id)
				summary.display_title = profiles[other].display_name if other else "User"
			else:
				summary.display_title = summary.thread.title
		summaries.sort(key=lambda s: (s.last_activity_at, s.thread.id), reverse=True)
		summaries.sort(key=lambda s: not s.pinned)
		return [
			schemas.ThreadSummaryDTO(
				id=summary.thread.id,
				kind=summary.thread.kind,
				title=summary.thread.title,
				display_title=summary.display_title,
				member_ids=list(summary.member_ids),
				last_message=_message_dto(summary.last_message) if summary.last_message else None,
				unread_count=summary.unread_count,
				pinned=summary.pinned,
				muted=summary.muted,
				last_activity_at=summary.last_activity_at,
			)
			for summary in summaries
		]

	async def list_messages(
		self,
		user_id: str,
		thread_id: str,
		*,
		cursor: Optional[str] = None,
		limit: Optional[int] = None,
	) -> schemas.MessagePageResponse:
		"""One page of history in chronological order.

		Pages walk backwards from the newest message. Loading the head page
		(no cursor) marks its newest message as read for the caller.
		"""
		await self._membership.require_thread_member(thread_id, user_id)
		anchor = decode_cursor(cursor)
		size = _clamp_limit(limit)
		rows = await self._repo.list_messages(thread_id, viewer_id=user_id, cursor=anchor, limit=size + 1)
		page = rows[:size]
		next_cursor = encode_cursor(page[-1].created_at, page[-1].id) if len(rows) > size else None
		if anchor is None and page:
			await self._repo.advance_last_read(thread_id, user_id, page[0])
		return schemas.MessagePageResponse(
			messages=[_message_dto(message) for message in reversed(page)],
			next_cursor=next_cursor,
		)

	async def thread_info(self, user_id: str, thread_id: str) -> schemas.ThreadInfoResponse:
		await self._membership.require_thread_member(thread_id, user_id)
		members = await self._repo.list_members(thread_id)
		profiles = await lookup_profiles(self.directory, [m.user_id for m in members])
		recent = await self._repo.recent_attachments(thread_id, policy.INFO_ATTACHMENTS_LIMIT)
		pins = await self._repo.list_pinned_messages(user_id, thread_id, policy.INFO_PINS_LIMIT)
		return schemas.ThreadInfoResponse(
			members=[
				schemas.MemberProfileDTO(
					user_id=member.user_id,
					role=member.role,
					joined_at=member.joined_at,
					display_name=profiles[member.user_id].display_name,
					entity_type=profiles[member.user_id].entity_type,
					avatar_url=profiles[member.user_id].avatar_url,
				)
				for member in members
			],
			attachments=[
				schemas.ThreadAttachmentDTO(
					**item.attachment.to_dict(),
					thread_id=item.thread_id,
					message_created_at=item.message_created_at,
				)
				for item in recent
			],
			pinned_messages=[
				schemas.PinnedMessageDTO(message_id=pin.message_id, thread_id=pin.thread_id, created_at=pin.created_at)
				for pin in pins
			],
		)

	async def search(self, user_id: str, thread_id: str, query: Optional[str]) -> List[schemas.MessageDTO]:
		await self._membership.require_thread_member(thread_id, user_id)
		term = (query or "").strip()
		if not term:
			return []
		searcher = self._search or get_thread_search()
		results = await searcher.search(thread_id, viewer_id=user_id, term=term, limit=policy.SEARCH_LIMIT)
		return [_message_dto(message) for message in results]
