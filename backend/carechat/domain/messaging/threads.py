"""Thread lifecycle: direct conversations, groups and group membership."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

import ulid

from carechat.domain.messaging import models, outbox, policy
from carechat.domain.messaging.directory import Directory, get_directory, lookup_profiles
from carechat.domain.messaging.exceptions import Blocked, Conflict, Forbidden, ValidationFailed
from carechat.domain.messaging.membership import MembershipService
from carechat.domain.messaging.preferences import PreferencesService
from carechat.domain.messaging.repo import DirectThreadExists
from carechat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _normalise_ids(values: Iterable[str], *, exclude: Optional[str] = None) -> List[str]:
	seen: List[str] = []
	for value in values:
		cleaned = str(value or "").strip()
		if not cleaned or cleaned == exclude or cleaned in seen:
			continue
		seen.append(cleaned)
	return seen


class ThreadService:
	def __init__(
		self,
		*,
		membership: MembershipService | None = None,
		preferences: PreferencesService | None = None,
		directory: Directory | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._membership = membership or MembershipService(clock=clock)
		self._repo = self._membership.repository
		self._preferences = preferences or PreferencesService(clock=clock)
		self._clock = clock or models.utcnow
		self._directory = directory

	@property
	def directory(self) -> Directory:
		return self._directory or get_directory()

	async def _find_direct(self, user_id: str, other_id: str) -> Optional[str]:
		wanted = {user_id, other_id}
		for thread_id in await self._repo.direct_thread_ids_for(user_id):
			members = await self._repo.list_members(thread_id)
			if {m.user_id for m in members} == wanted and len(members) == 2:
				return thread_id
		return None

	async def open_direct(self, user_id: str, other_id: str) -> str:
		"""Return the direct thread between the two users, creating it on first contact."""
		other_id = (other_id or "").strip()
		if not other_id:
			raise ValidationFailed("missing_user", "A user id is required")
		if other_id == user_id:
			raise ValidationFailed("cannot_message_self", "You cannot message yourself")
		if await self._repo.block_exists_between(user_id, other_id):
			raise Blocked()
		existing = await self._find_direct(user_id, other_id)
		if existing:
			return existing
		if not await self._preferences.accepts_new_chats(other_id):
			raise Conflict("not_accepting_chats", "This user is not accepting new conversations")
		await self._ensure_contact_allowed(user_id, other_id)

		now = self._clock()
		thread = models.Thread(
			id=str(ulid.new()),
			kind=models.THREAD_DIRECT,
			title=None,
			created_by=user_id,
			created_at=now,
			direct_key=models.direct_key(user_id, other_id),
		)
		members = [
			models.ThreadMember(thread_id=thread.id, user_id=uid, role=models.ROLE_MEMBER, joined_at=now)
			for uid in (user_id, other_id)
		]
		try:
			await self._repo.create_thread(thread, members)
		except DirectThreadExists:
			winner = await self._find_direct(user_id, other_id)
			if winner is None:
				raise Conflict("conflict", "Conversation is being created, retry") from None
			logger.info("direct_thread_race_resolved", extra={"thread_id": winner})
			return winner
		obs_metrics.inc_thread_created(models.THREAD_DIRECT)
		await outbox.append_event("thread_created", thread_id=thread.id, user_id=user_id, meta={"kind": thread.kind})
		return thread.id

	async def _ensure_contact_allowed(self, user_id: str, other_id: str) -> None:
		contact = await self._preferences.contact_policy(other_id)
		if contact == models.CONTACT_NOBODY:
			raise Conflict("not_accepting_chats", "This user is not accepting new conversations")
		if contact == models.CONTACT_PROFESSIONALS:
			caller = (await lookup_profiles(self.directory, [user_id]))[user_id]
			if caller.entity_type not in policy.PROFESSIONAL_ENTITY_TYPES:
				raise Forbidden("contact_restricted", "This user only accepts conversations from professionals")

	async def create_group(self, user_id: str, title: str, member_ids: Iterable[str]) -> str:
		participants = [user_id] + _normalise_ids(member_ids, exclude=user_id)
		if len(participants) < policy.GROUP_MIN_MEMBERS:
			raise ValidationFailed(
				"too_few_members",
				f"Groups need at least {policy.GROUP_MIN_MEMBERS} members including you",
			)
		title = (title or "").strip()
		if not title:
			raise ValidationFailed("missing_title", "Groups need a title")
		if len(title) > policy.TITLE_MAX_LEN:
			raise ValidationFailed("title_too_long", f"Titles are limited to {policy.TITLE_MAX_LEN} characters")

		now = self._clock()
		thread = models.Thread(
			id=str(ulid.new()),
			kind=models.THREAD_GROUP,
			title=title,
			created_by=user_id,
			created_at=now,
		)
		members = [
			models.ThreadMember(
				thread_id=thread.id,
				user_id=uid,
				role=models.ROLE_OWNER if uid == user_id else models.ROLE_MEMBER,
				joined_at=now,
			)
			for uid in participants
		]
		await self._repo.create_thread(thread, members)
		obs_metrics.inc_thread_created(models.THREAD_GROUP)
		await outbox.append_event(
			"thread_created",
			thread_id=thread.id,
			user_id=user_id,
			meta={"kind": thread.kind, "members": len(members)},
		)
		return thread.id

	async def add_members(self, user_id: str, thread_id: str, member_ids: Iterable[str]) -> List[str]:
		thread, actor = await self._membership.require_thread_member(thread_id, user_id)
		if thread.is_direct():
			raise Conflict("cannot_add_to_direct", "Members cannot be added to a direct conversation")
		if not actor.is_owner():
			raise Forbidden("forbidden", "Only the group owner can add members")
		candidates = _normalise_ids(member_ids, exclude=user_id)
		if not candidates:
			return []
		now = self._clock()
		added = await self._repo.add_members(
			[
				models.ThreadMember(thread_id=thread_id, user_id=uid, role=models.ROLE_MEMBER, joined_at=now)
				for uid in candidates
			]
		)
		if added:
			await outbox.append_event(
				"members_added",
				thread_id=thread_id,
				user_id=user_id,
				meta={"added": ",".join(added)},
			)
		return added
