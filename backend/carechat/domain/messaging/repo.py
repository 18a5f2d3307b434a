"""Storage gateway for messaging data.

All thread, membership, message, attachment and moderation rows are read and
written here. Postgres (asyncpg) is used when a pool is reachable; otherwise
an in-memory store with the same semantics backs tests and local runs.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import asyncpg

from carechat.domain.messaging import models
from carechat.infra.postgres import get_pool

Cursor = Tuple[datetime, str]


class DirectThreadExists(Exception):
	"""Raised when another writer already created the direct thread for a pair."""

	def __init__(self, key: str) -> None:
		super().__init__(key)
		self.key = key


class FullTextUnavailable(Exception):
	"""Raised when the backing store cannot run full-text queries."""


def escape_like(term: str) -> str:
	return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _before(message: models.Message, cursor: Optional[Cursor]) -> bool:
	return cursor is None or message.sort_key() < cursor


class _MemoryStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.threads: Dict[str, models.Thread] = {}
		self.direct_keys: Dict[str, str] = {}
		self.members: Dict[str, Dict[str, models.ThreadMember]] = {}
		self.messages: Dict[str, models.Message] = {}
		self.thread_messages: Dict[str, List[str]] = {}
		self.attachments: Dict[str, models.Attachment] = {}
		self.hides: Set[Tuple[str, str]] = set()
		self.blocks: Dict[Tuple[str, str], models.Block] = {}
		self.pinned_threads: Dict[Tuple[str, str], datetime] = {}
		self.pinned_messages: Dict[Tuple[str, str], models.PinnedMessage] = {}

	def clear(self) -> None:
		self.threads.clear()
		self.direct_keys.clear()
		self.members.clear()
		self.messages.clear()
		self.thread_messages.clear()
		self.attachments.clear()
		self.hides.clear()
		self.blocks.clear()
		self.pinned_threads.clear()
		self.pinned_messages.clear()

	def _with_attachments(self, message: models.Message) -> models.Message:
		attachments = sorted(
			(a for a in self.attachments.values() if a.message_id == message.id),
			key=lambda a: (a.created_at, a.id),
		)
		return replace(message, attachments=tuple(replace(a) for a in attachments))

	def _visible(self, thread_id: str, viewer_id: Optional[str]) -> List[models.Message]:
		ids = self.thread_messages.get(thread_id, [])
		rows = [self.messages[mid] for mid in ids]
		if viewer_id is not None:
			rows = [m for m in rows if (viewer_id, m.id) not in self.hides]
		rows.sort(key=lambda m: m.sort_key(), reverse=True)
		return rows

	async def create_thread(self, thread: models.Thread, members: Sequence[models.ThreadMember]) -> models.Thread:
		async with self._lock:
			if thread.direct_key and thread.direct_key in self.direct_keys:
				raise DirectThreadExists(thread.direct_key)
			self.threads[thread.id] = thread
			if thread.direct_key:
				self.direct_keys[thread.direct_key] = thread.id
			self.members[thread.id] = {m.user_id: replace(m) for m in members}
			self.thread_messages.setdefault(thread.id, [])
			return thread

	async def get_thread(self, thread_id: str) -> Optional[models.Thread]:
		async with self._lock:
			thread = self.threads.get(thread_id)
			return replace(thread) if thread else None

	async def direct_thread_ids_for(self, user_id: str) -> List[str]:
		async with self._lock:
			threads = [
				t
				for t in self.threads.values()
				if t.is_direct() and user_id in self.members.get(t.id, {})
			]
			threads.sort(key=lambda t: (t.created_at, t.id))
			return [t.id for t in threads]

	async def list_members(self, thread_id: str) -> List[models.ThreadMember]:
		async with self._lock:
			members = sorted(self.members.get(thread_id, {}).values(), key=lambda m: (m.joined_at, m.user_id))
			return [replace(m) for m in members]

	async def get_member(self, thread_id: str, user_id: str) -> Optional[models.ThreadMember]:
		async with self._lock:
			member = self.members.get(thread_id, {}).get(user_id)
			return replace(member) if member else None

	async def add_members(self, members: Sequence[models.ThreadMember]) -> List[str]:
		async with self._lock:
			added: List[str] = []
			for member in members:
				bucket = self.members.setdefault(member.thread_id, {})
				if member.user_id in bucket:
					continue
				bucket[member.user_id] = replace(member)
				added.append(member.user_id)
			return added

	async def remove_member(self, thread_id: str, user_id: str) -> bool:
		async with self._lock:
			return self.members.get(thread_id, {}).pop(user_id, None) is not None

	async def set_muted(self, thread_id: str, user_id: str, muted: bool) -> bool:
		async with self._lock:
			member = self.members.get(thread_id, {}).get(user_id)
			if member is None:
				return False
			member.muted = muted
			return True

	async def advance_last_read(self, thread_id: str, user_id: str, message: models.Message) -> Optional[str]:
		async with self._lock:
			member = self.members.get(thread_id, {}).get(user_id)
			if member is None:
				return None
			current = self.messages.get(member.last_read_message_id or "")
			if current is None or current.sort_key() < message.sort_key():
				member.last_read_message_id = message.id
			return member.last_read_message_id

	async def create_message(self, message: models.Message, attachments: Sequence[models.Attachment]) -> models.Message:
		async with self._lock:
			self.messages[message.id] = replace(message, attachments=())
			self.thread_messages.setdefault(message.thread_id, []).append(message.id)
			for attachment in attachments:
				self.attachments[attachment.id] = replace(attachment)
			return self._with_attachments(self.messages[message.id])

	async def get_message(self, message_id: str) -> Optional[models.Message]:
		async with self._lock:
			message = self.messages.get(message_id)
			return self._with_attachments(message) if message else None

	async def update_content(self, message_id: str, content: str, edited_at: datetime) -> Optional[models.Message]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			message.content = content
			message.is_edited = True
			message.edited_at = edited_at
			return self._with_attachments(message)

	async def soft_delete(self, message_id: str, deleted_at: datetime) -> Optional[models.Message]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			if not message.is_deleted:
				message.is_deleted = True
				message.deleted_at = deleted_at
				message.content = None
			return self._with_attachments(message)

	async def hide_message(self, user_id: str, message_id: str) -> None:
		async with self._lock:
			self.hides.add((user_id, message_id))

	async def list_messages(self, thread_id: str, *, viewer_id: str, cursor: Optional[Cursor], limit: int) -> List[models.Message]:
		async with self._lock:
			rows = [m for m in self._visible(thread_id, viewer_id) if _before(m, cursor)]
			return [self._with_attachments(m) for m in rows[:limit]]

	async def search_substring(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		needle = term.casefold()
		async with self._lock:
			rows = [
				m
				for m in self._visible(thread_id, viewer_id)
				if not m.is_deleted and m.content and needle in m.content.casefold()
			]
			return [self._with_attachments(m) for m in rows[:limit]]

	async def thread_summaries(self, user_id: str) -> List[models.ThreadSummary]:
		async with self._lock:
			summaries: List[models.ThreadSummary] = []
			for thread_id, bucket in self.members.items():
				member = bucket.get(user_id)
				if member is None:
					continue
				thread = self.threads[thread_id]
				visible = self._visible(thread_id, user_id)
				last = self._with_attachments(visible[0]) if visible else None
				anchor = self.messages.get(member.last_read_message_id or "")
				all_messages = [self.messages[mid] for mid in self.thread_messages.get(thread_id, [])]
				if anchor is None:
					unread = len(all_messages)
				else:
					unread = sum(1 for m in all_messages if m.created_at > anchor.created_at)
				ordered_members = sorted(bucket.values(), key=lambda m: (m.joined_at, m.user_id))
				summaries.append(
					models.ThreadSummary(
						thread=replace(thread),
						member_ids=tuple(m.user_id for m in ordered_members),
						last_message=last,
						unread_count=unread,
						pinned=(user_id, thread_id) in self.pinned_threads,
						muted=member.muted,
					)
				)
			return summaries

	async def get_attachment(self, attachment_id: str) -> Optional[models.Attachment]:
		async with self._lock:
			attachment = self.attachments.get(attachment_id)
			return replace(attachment) if attachment else None

	async def confirm_attachment(self, attachment_id: str, size_bytes: int, confirmed_at: datetime) -> Optional[models.Attachment]:
		async with self._lock:
			attachment = self.attachments.get(attachment_id)
			if attachment is None:
				return None
			attachment.byte_size = size_bytes
			attachment.upload_status = models.UPLOAD_DONE
			attachment.confirmed_at = confirmed_at
			return replace(attachment)

	async def recent_attachments(self, thread_id: str, limit: int) -> List[models.AttachmentWithContext]:
		async with self._lock:
			messages = {mid: self.messages[mid] for mid in self.thread_messages.get(thread_id, [])}
			rows = [a for a in self.attachments.values() if a.message_id in messages]
			rows.sort(key=lambda a: (messages[a.message_id].sort_key(), a.created_at, a.id), reverse=True)
			return [
				models.AttachmentWithContext(
					attachment=replace(a),
					thread_id=thread_id,
					message_created_at=messages[a.message_id].created_at,
				)
				for a in rows[:limit]
			]

	async def block_exists_between(self, user_one: str, user_two: str) -> bool:
		async with self._lock:
			return (user_one, user_two) in self.blocks or (user_two, user_one) in self.blocks

	async def toggle_block(self, blocker_id: str, blocked_id: str, now: datetime) -> bool:
		async with self._lock:
			key = (blocker_id, blocked_id)
			if key in self.blocks:
				del self.blocks[key]
				return False
			self.blocks[key] = models.Block(blocker_id=blocker_id, blocked_id=blocked_id, created_at=now)
			return True

	async def toggle_pinned_thread(self, user_id: str, thread_id: str, now: datetime) -> bool:
		async with self._lock:
			key = (user_id, thread_id)
			if key in self.pinned_threads:
				del self.pinned_threads[key]
				return False
			self.pinned_threads[key] = now
			return True

	async def toggle_pinned_message(self, user_id: str, thread_id: str, message_id: str, now: datetime) -> bool:
		async with self._lock:
			key = (user_id, message_id)
			if key in self.pinned_messages:
				del self.pinned_messages[key]
				return False
			self.pinned_messages[key] = models.PinnedMessage(
				user_id=user_id,
				thread_id=thread_id,
				message_id=message_id,
				created_at=now,
			)
			return True

	async def list_pinned_messages(self, user_id: str, thread_id: str, limit: int) -> List[models.PinnedMessage]:
		async with self._lock:
			rows = [
				replace(p)
				for (owner, _), p in self.pinned_messages.items()
				if owner == user_id and p.thread_id == thread_id
			]
			rows.sort(key=lambda p: (p.created_at, p.message_id), reverse=True)
			return rows[:limit]


_MEMORY = _MemoryStore()


def _row_to_thread(row: asyncpg.Record) -> models.Thread:
	return models.Thread(
		id=str(row["id"]),
		kind=row["kind"],
		title=row["title"],
		created_by=str(row["created_by"]),
		created_at=row["created_at"],
		direct_key=row["direct_key"],
	)


def _row_to_member(row: asyncpg.Record) -> models.ThreadMember:
	return models.ThreadMember(
		thread_id=str(row["thread_id"]),
		user_id=str(row["user_id"]),
		role=row["role"],
		joined_at=row["joined_at"],
		muted=bool(row["muted"]),
		last_read_message_id=row["last_read_message_id"],
	)


def _row_to_attachment(row: asyncpg.Record) -> models.Attachment:
	return models.Attachment(
		id=str(row["id"]),
		message_id=str(row["message_id"]),
		file_name=row["file_name"],
		mime_type=row["mime_type"],
		byte_size=int(row["byte_size"]) if row["byte_size"] is not None else None,
		storage_path=row["storage_path"],
		created_at=row["created_at"],
		upload_status=row["upload_status"],
		confirmed_at=row["confirmed_at"],
	)


def _row_to_message(row: asyncpg.Record, attachments: Iterable[models.Attachment] = (), *, prefix: str = "") -> models.Message:
	return models.Message(
		id=str(row[f"{prefix}id"]),
		thread_id=str(row[f"{prefix}thread_id"]),
		sender_id=str(row[f"{prefix}sender_id"]),
		content=row[f"{prefix}content"],
		kind=row[f"{prefix}kind"],
		created_at=row[f"{prefix}created_at"],
		reply_to_message_id=row[f"{prefix}reply_to_message_id"],
		is_edited=bool(row[f"{prefix}is_edited"]),
		edited_at=row[f"{prefix}edited_at"],
		is_deleted=bool(row[f"{prefix}is_deleted"]),
		deleted_at=row[f"{prefix}deleted_at"],
		attachments=tuple(attachments),
	)


_MESSAGE_COLUMNS = """
	m.id, m.thread_id, m.sender_id, m.content, m.kind, m.created_at, m.reply_to_message_id,
	m.is_edited, m.edited_at, m.is_deleted, m.deleted_at
"""

_NOT_HIDDEN = """
	NOT EXISTS (
		SELECT 1 FROM chat_message_hides h
		WHERE h.message_id = m.id AND h.user_id = $2
	)
"""


class MessagingRepository:
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except (OSError, asyncpg.PostgresError):
			pool = None
		self._pool_instance = pool
		return pool

	async def _attach(self, conn, rows: Sequence[asyncpg.Record]) -> List[models.Message]:
		if not rows:
			return []
		ids = [str(row["id"]) for row in rows]
		attachment_rows = await conn.fetch(
			"SELECT * FROM chat_attachments WHERE message_id = ANY($1::text[]) ORDER BY created_at, id",
			ids,
		)
		grouped: Dict[str, List[models.Attachment]] = {}
		for attachment_row in attachment_rows:
			attachment = _row_to_attachment(attachment_row)
			grouped.setdefault(attachment.message_id, []).append(attachment)
		return [_row_to_message(row, grouped.get(str(row["id"]), ())) for row in rows]

	# Threads & membership

	async def create_thread(self, thread: models.Thread, members: Sequence[models.ThreadMember]) -> models.Thread:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_thread(thread, members)
		async with pool.acquire() as conn:
			try:
				async with conn.transaction():
					await conn.execute(
						"""
						INSERT INTO chat_threads (id, kind, title, created_by, direct_key, created_at)
						VALUES ($1,$2,$3,$4,$5,$6)
						""",
						thread.id,
						thread.kind,
						thread.title,
						thread.created_by,
						thread.direct_key,
						thread.created_at,
					)
					await conn.executemany(
						"""
						INSERT INTO chat_thread_members (thread_id, user_id, role, joined_at, muted)
						VALUES ($1,$2,$3,$4,FALSE)
						""",
						[(m.thread_id, m.user_id, m.role, m.joined_at) for m in members],
					)
			except asyncpg.UniqueViolationError as exc:
				if thread.direct_key:
					raise DirectThreadExists(thread.direct_key) from exc
				raise
		return thread

	async def get_thread(self, thread_id: str) -> Optional[models.Thread]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_thread(thread_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM chat_threads WHERE id = $1", thread_id)
			return _row_to_thread(row) if row else None

	async def direct_thread_ids_for(self, user_id: str) -> List[str]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.direct_thread_ids_for(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT t.id
				FROM chat_threads t
				JOIN chat_thread_members tm ON tm.thread_id = t.id
				WHERE tm.user_id = $1 AND t.kind = 'direct'
				ORDER BY t.created_at, t.id
				""",
				user_id,
			)
			return [str(row["id"]) for row in rows]

	async def list_members(self, thread_id: str) -> List[models.ThreadMember]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_members(thread_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM chat_thread_members WHERE thread_id = $1 ORDER BY joined_at, user_id",
				thread_id,
			)
			return [_row_to_member(row) for row in rows]

	async def get_member(self, thread_id: str, user_id: str) -> Optional[models.ThreadMember]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_member(thread_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT * FROM chat_thread_members WHERE thread_id = $1 AND user_id = $2",
				thread_id,
				user_id,
			)
			return _row_to_member(row) if row else None

	async def add_members(self, members: Sequence[models.ThreadMember]) -> List[str]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.add_members(members)
		added: List[str] = []
		async with pool.acquire() as conn:
			async with conn.transaction():
				for member in members:
					row = await conn.fetchrow(
						"""
						INSERT INTO chat_thread_members (thread_id, user_id, role, joined_at, muted)
						VALUES ($1,$2,$3,$4,FALSE)
						ON CONFLICT (thread_id, user_id) DO NOTHING
						RETURNING user_id
						""",
						member.thread_id,
						member.user_id,
						member.role,
						member.joined_at,
					)
					if row:
						added.append(str(row["user_id"]))
		return added

	async def remove_member(self, thread_id: str, user_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.remove_member(thread_id, user_id)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"DELETE FROM chat_thread_members WHERE thread_id = $1 AND user_id = $2",
				thread_id,
				user_id,
			)
			return result.endswith(" 1")

	async def set_muted(self, thread_id: str, user_id: str, muted: bool) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.set_muted(thread_id, user_id, muted)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"UPDATE chat_thread_members SET muted = $3 WHERE thread_id = $1 AND user_id = $2",
				thread_id,
				user_id,
				muted,
			)
			return result.endswith(" 1")

	async def advance_last_read(self, thread_id: str, user_id: str, message: models.Message) -> Optional[str]:
		"""Move the member's read marker forward to ``message``; never backward."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.advance_last_read(thread_id, user_id, message)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				UPDATE chat_thread_members tm
				SET last_read_message_id = $3
				WHERE tm.thread_id = $1
					AND tm.user_id = $2
					AND NOT EXISTS (
						SELECT 1 FROM chat_messages cur
						WHERE cur.id = tm.last_read_message_id
							AND (cur.created_at, cur.id) >= ($4::timestamptz, $3::text)
					)
				""",
				thread_id,
				user_id,
				message.id,
				message.created_at,
			)
			row = await conn.fetchrow(
				"SELECT last_read_message_id FROM chat_thread_members WHERE thread_id = $1 AND user_id = $2",
				thread_id,
				user_id,
			)
			return row["last_read_message_id"] if row else None

	async def thread_summaries(self, user_id: str) -> List[models.ThreadSummary]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.thread_summaries(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT
					t.*,
					tm.muted,
					(pt.user_id IS NOT NULL) AS pinned,
					ARRAY(
						SELECT mm.user_id FROM chat_thread_members mm
						WHERE mm.thread_id = t.id ORDER BY mm.joined_at, mm.user_id
					) AS member_ids,
					lm.id AS lm_id, lm.thread_id AS lm_thread_id, lm.sender_id AS lm_sender_id,
					lm.content AS lm_content, lm.kind AS lm_kind, lm.created_at AS lm_created_at,
					lm.reply_to_message_id AS lm_reply_to_message_id, lm.is_edited AS lm_is_edited,
					lm.edited_at AS lm_edited_at, lm.is_deleted AS lm_is_deleted, lm.deleted_at AS lm_deleted_at,
					(
						SELECT COUNT(*) FROM chat_messages um
						WHERE um.thread_id = t.id
							AND um.created_at > COALESCE(
								(SELECT r.created_at FROM chat_messages r WHERE r.id = tm.last_read_message_id),
								'-infinity'::timestamptz
							)
					) AS unread_count
				FROM chat_thread_members tm
				JOIN chat_threads t ON t.id = tm.thread_id
				LEFT JOIN chat_pinned_threads pt ON pt.thread_id = t.id AND pt.user_id = tm.user_id
				LEFT JOIN LATERAL (
					SELECT m.* FROM chat_messages m
					WHERE m.thread_id = t.id
						AND NOT EXISTS (
							SELECT 1 FROM chat_message_hides h WHERE h.message_id = m.id AND h.user_id = $1
						)
					ORDER BY m.created_at DESC, m.id DESC
					LIMIT 1
				) lm ON TRUE
				WHERE tm.user_id = $1
				""",
				user_id,
			)
			summaries: List[models.ThreadSummary] = []
			for row in rows:
				last = _row_to_message(row, prefix="lm_") if row["lm_id"] else None
				summaries.append(
					models.ThreadSummary(
						thread=_row_to_thread(row),
						member_ids=tuple(str(uid) for uid in row["member_ids"]),
						last_message=last,
						unread_count=int(row["unread_count"]),
						pinned=bool(row["pinned"]),
						muted=bool(row["muted"]),
					)
				)
			return summaries

	# Messages & attachments

	async def create_message(self, message: models.Message, attachments: Sequence[models.Attachment]) -> models.Message:
		"""Persist a message and its attachment reservations atomically."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_message(message, attachments)
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute(
					"""
					INSERT INTO chat_messages (
						id, thread_id, sender_id, content, kind, reply_to_message_id, created_at
					) VALUES ($1,$2,$3,$4,$5,$6,$7)
					""",
					message.id,
					message.thread_id,
					message.sender_id,
					message.content,
					message.kind,
					message.reply_to_message_id,
					message.created_at,
				)
				if attachments:
					await conn.executemany(
						"""
						INSERT INTO chat_attachments (
							id, message_id, file_name, mime_type, byte_size, storage_path, upload_status, created_at
						) VALUES ($1,$2,$3,$4,$5,$6,$7,$8)
						""",
						[
							(
								a.id,
								a.message_id,
								a.file_name,
								a.mime_type,
								a.byte_size,
								a.storage_path,
								a.upload_status,
								a.created_at,
							)
							for a in attachments
						],
					)
		return replace(message, attachments=tuple(attachments))

	async def get_message(self, message_id: str) -> Optional[models.Message]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_message(message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages m WHERE m.id = $1", message_id)
			if not row:
				return None
			return (await self._attach(conn, [row]))[0]

	async def update_content(self, message_id: str, content: str, edited_at: datetime) -> Optional[models.Message]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.update_content(message_id, content, edited_at)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE chat_messages m
				SET content = $2, is_edited = TRUE, edited_at = $3
				WHERE m.id = $1
				RETURNING {_MESSAGE_COLUMNS}
				""",
				message_id,
				content,
				edited_at,
			)
			if not row:
				return None
			return (await self._attach(conn, [row]))[0]

	async def soft_delete(self, message_id: str, deleted_at: datetime) -> Optional[models.Message]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.soft_delete(message_id, deleted_at)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				UPDATE chat_messages
				SET is_deleted = TRUE, deleted_at = $2, content = NULL
				WHERE id = $1 AND is_deleted = FALSE
				""",
				message_id,
				deleted_at,
			)
			row = await conn.fetchrow(f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages m WHERE m.id = $1", message_id)
			if not row:
				return None
			return (await self._attach(conn, [row]))[0]

	async def hide_message(self, user_id: str, message_id: str) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.hide_message(user_id, message_id)
			return
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO chat_message_hides (user_id, message_id)
				VALUES ($1, $2)
				ON CONFLICT (user_id, message_id) DO NOTHING
				""",
				user_id,
				message_id,
			)

	async def list_messages(
		self,
		thread_id: str,
		*,
		viewer_id: str,
		cursor: Optional[Cursor],
		limit: int,
	) -> List[models.Message]:
		"""Return up to ``limit`` messages older than ``cursor``, newest first."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_messages(thread_id, viewer_id=viewer_id, cursor=cursor, limit=limit)
		params: List[object] = [thread_id, viewer_id]
		where_clause = ""
		if cursor:
			params.extend([cursor[0], cursor[1]])
			where_clause = " AND (m.created_at, m.id) < ($3, $4)"
		params.append(limit)
		query = (
			f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages m WHERE m.thread_id = $1 AND {_NOT_HIDDEN}"
			+ where_clause
			+ f" ORDER BY m.created_at DESC, m.id DESC LIMIT ${len(params)}"
		)
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
			return await self._attach(conn, rows)

	async def search_substring(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.search_substring(thread_id, viewer_id=viewer_id, term=term, limit=limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM chat_messages m
				WHERE m.thread_id = $1
					AND {_NOT_HIDDEN}
					AND m.is_deleted = FALSE
					AND m.content ILIKE $3 ESCAPE '\\'
				ORDER BY m.created_at DESC, m.id DESC
				LIMIT $4
				""",
				thread_id,
				viewer_id,
				f"%{escape_like(term)}%",
				limit,
			)
			return await self._attach(conn, rows)

	async def search_fulltext(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		pool = await self._get_pool()
		if pool is None:
			raise FullTextUnavailable("no_pool")
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM chat_messages m
				WHERE m.thread_id = $1
					AND {_NOT_HIDDEN}
					AND m.is_deleted = FALSE
					AND to_tsvector('simple', coalesce(m.content, '')) @@ websearch_to_tsquery('simple', $3)
				ORDER BY m.created_at DESC, m.id DESC
				LIMIT $4
				""",
				thread_id,
				viewer_id,
				term,
				limit,
			)
			return await self._attach(conn, rows)

	async def fulltext_available(self) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return False
		async with pool.acquire() as conn:
			try:
				await conn.fetchval(
					"SELECT to_tsvector('simple', 'check') @@ websearch_to_tsquery('simple', 'check')"
				)
			except asyncpg.PostgresError:
				return False
		return True

	async def get_attachment(self, attachment_id: str) -> Optional[models.Attachment]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_attachment(attachment_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM chat_attachments WHERE id = $1", attachment_id)
			return _row_to_attachment(row) if row else None

	async def confirm_attachment(self, attachment_id: str, size_bytes: int, confirmed_at: datetime) -> Optional[models.Attachment]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.confirm_attachment(attachment_id, size_bytes, confirmed_at)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				UPDATE chat_attachments
				SET byte_size = $2, upload_status = 'uploaded', confirmed_at = $3
				WHERE id = $1
				RETURNING *
				""",
				attachment_id,
				size_bytes,
				confirmed_at,
			)
			return _row_to_attachment(row) if row else None

	async def recent_attachments(self, thread_id: str, limit: int) -> List[models.AttachmentWithContext]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.recent_attachments(thread_id, limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT a.*, m.created_at AS message_created_at
				FROM chat_attachments a
				JOIN chat_messages m ON m.id = a.message_id
				WHERE m.thread_id = $1
				ORDER BY m.created_at DESC, m.id DESC, a.created_at DESC, a.id DESC
				LIMIT $2
				""",
				thread_id,
				limit,
			)
			return [
				models.AttachmentWithContext(
					attachment=_row_to_attachment(row),
					thread_id=thread_id,
					message_created_at=row["message_created_at"],
				)
				for row in rows
			]

	# Moderation & pins

	async def block_exists_between(self, user_one: str, user_two: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.block_exists_between(user_one, user_two)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT 1 FROM chat_blocks
				WHERE (blocker_id = $1 AND blocked_id = $2) OR (blocker_id = $2 AND blocked_id = $1)
				LIMIT 1
				""",
				user_one,
				user_two,
			)
			return row is not None

	async def toggle_block(self, blocker_id: str, blocked_id: str, now: datetime) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.toggle_block(blocker_id, blocked_id, now)
		async with pool.acquire() as conn:
			async with conn.transaction():
				removed = await conn.fetchrow(
					"DELETE FROM chat_blocks WHERE blocker_id = $1 AND blocked_id = $2 RETURNING blocker_id",
					blocker_id,
					blocked_id,
				)
				if removed:
					return False
				await conn.execute(
					"""
					INSERT INTO chat_blocks (blocker_id, blocked_id, created_at)
					VALUES ($1, $2, $3)
					ON CONFLICT (blocker_id, blocked_id) DO NOTHING
					""",
					blocker_id,
					blocked_id,
					now,
				)
				return True

	async def toggle_pinned_thread(self, user_id: str, thread_id: str, now: datetime) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.toggle_pinned_thread(user_id, thread_id, now)
		async with pool.acquire() as conn:
			async with conn.transaction():
				removed = await conn.fetchrow(
					"DELETE FROM chat_pinned_threads WHERE user_id = $1 AND thread_id = $2 RETURNING thread_id",
					user_id,
					thread_id,
				)
				if removed:
					return False
				await conn.execute(
					"""
					INSERT INTO chat_pinned_threads (user_id, thread_id, created_at)
					VALUES ($1, $2, $3)
					ON CONFLICT (user_id, thread_id) DO NOTHING
					""",
					user_id,
					thread_id,
					now,
				)
				return True

	async def toggle_pinned_message(self, user_id: str, thread_id: str, message_id: str, now: datetime) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.toggle_pinned_message(user_id, thread_id, message_id, now)
		async with pool.acquire() as conn:
			async with conn.transaction():
				removed = await conn.fetchrow(
					"DELETE FROM chat_pinned_messages WHERE user_id = $1 AND message_id = $2 RETURNING message_id",
					user_id,
					message_id,
				)
				if removed:
					return False
				await conn.execute(
					"""
					INSERT INTO chat_pinned_messages (user_id, thread_id, message_id, created_at)
					VALUES ($1, $2, $3, $4)
					ON CONFLICT (user_id, message_id) DO NOTHING
					""",
					user_id,
					thread_id,
					message_id,
					now,
				)
				return True

	async def list_pinned_messages(self, user_id: str, thread_id: str, limit: int) -> List[models.PinnedMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_pinned_messages(user_id, thread_id, limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT user_id, thread_id, message_id, created_at
				FROM chat_pinned_messages
				WHERE user_id = $1 AND thread_id = $2
				ORDER BY created_at DESC, message_id DESC
				LIMIT $3
				""",
				user_id,
				thread_id,
				limit,
			)
			return [
				models.PinnedMessage(
					user_id=str(row["user_id"]),
					thread_id=str(row["thread_id"]),
					message_id=str(row["message_id"]),
					created_at=row["created_at"],
				)
				for row in rows
			]


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.clear()
