"""Per-user chat preferences: inbox settings and quick replies."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

import asyncpg
import ulid

from carechat.domain.messaging import models
from carechat.domain.messaging.exceptions import NotFound, ValidationFailed
from carechat.infra.postgres import get_pool

_QUICK_REPLY_FIELDS = ("title", "content", "category", "shortcut", "sort_order")


class _PreferencesStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.settings: Dict[str, models.ChatSettings] = {}
		self.quick_replies: Dict[str, models.QuickReply] = {}

	async def get_settings(self, user_id: str) -> Optional[models.ChatSettings]:
		async with self._lock:
			current = self.settings.get(user_id)
			return replace(current) if current else None

	async def upsert_settings(self, value: models.ChatSettings) -> models.ChatSettings:
		async with self._lock:
			self.settings[value.user_id] = replace(value)
			return value

	async def list_quick_replies(self, user_id: str) -> List[models.QuickReply]:
		async with self._lock:
			rows = [replace(q) for q in self.quick_replies.values() if q.user_id == user_id]
			rows.sort(key=lambda q: (q.sort_order, q.created_at, q.id))
			return rows

	async def get_quick_reply(self, reply_id: str) -> Optional[models.QuickReply]:
		async with self._lock:
			current = self.quick_replies.get(reply_id)
			return replace(current) if current else None

	async def save_quick_reply(self, reply: models.QuickReply) -> models.QuickReply:
		async with self._lock:
			self.quick_replies[reply.id] = replace(reply)
			return reply

	async def delete_quick_reply(self, user_id: str, reply_id: str) -> bool:
		async with self._lock:
			current = self.quick_replies.get(reply_id)
			if current is None or current.user_id != user_id:
				return False
			del self.quick_replies[reply_id]
			return True


_STORE = _PreferencesStore()


def _row_to_quick_reply(row: asyncpg.Record) -> models.QuickReply:
	return models.QuickReply(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		title=row["title"],
		content=row["content"],
		category=row["category"],
		shortcut=row["shortcut"],
		sort_order=int(row["sort_order"] or 0),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


class PreferencesRepository:
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

	async def get_settings(self, user_id: str) -> Optional[models.ChatSettings]:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.get_settings(user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT user_id, accept_new_chats, who_can_contact, updated_at FROM chat_settings WHERE user_id = $1",
				user_id,
			)
			if not row:
				return None
			return models.ChatSettings(
				user_id=str(row["user_id"]),
				accept_new_chats=bool(row["accept_new_chats"]),
				who_can_contact=row["who_can_contact"] or models.CONTACT_EVERYONE,
				updated_at=row["updated_at"],
			)

	async def upsert_settings(self, value: models.ChatSettings) -> models.ChatSettings:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.upsert_settings(value)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO chat_settings (user_id, accept_new_chats, who_can_contact, updated_at)
				VALUES ($1, $2, $3, $4)
				ON CONFLICT (user_id)
				DO UPDATE SET
					accept_new_chats = EXCLUDED.accept_new_chats,
					who_can_contact = EXCLUDED.who_can_contact,
					updated_at = EXCLUDED.updated_at
				""",
				value.user_id,
				value.accept_new_chats,
				value.who_can_contact,
				value.updated_at,
			)
		return value

	async def list_quick_replies(self, user_id: str) -> List[models.QuickReply]:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.list_quick_replies(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM chat_quick_replies WHERE user_id = $1 ORDER BY sort_order, created_at, id",
				user_id,
			)
			return [_row_to_quick_reply(row) for row in rows]

	async def get_quick_reply(self, reply_id: str) -> Optional[models.QuickReply]:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.get_quick_reply(reply_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM chat_quick_replies WHERE id = $1", reply_id)
			return _row_to_quick_reply(row) if row else None

	async def save_quick_reply(self, reply: models.QuickReply) -> models.QuickReply:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.save_quick_reply(reply)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO chat_quick_replies (
					id, user_id, title, content, category, shortcut, sort_order, created_at, updated_at
				) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9)
				ON CONFLICT (id) DO UPDATE SET
					title = EXCLUDED.title,
					content = EXCLUDED.content,
					category = EXCLUDED.category,
					shortcut = EXCLUDED.shortcut,
					sort_order = EXCLUDED.sort_order,
					updated_at = EXCLUDED.updated_at
				""",
				reply.id,
				reply.user_id,
				reply.title,
				reply.content,
				reply.category,
				reply.shortcut,
				reply.sort_order,
				reply.created_at,
				reply.updated_at,
			)
		return reply

	async def delete_quick_reply(self, user_id: str, reply_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.delete_quick_reply(user_id, reply_id)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"DELETE FROM chat_quick_replies WHERE id = $1 AND user_id = $2",
				reply_id,
				user_id,
			)
			return result.endswith(" 1")


class PreferencesService:
	def __init__(
		self,
		*,
		repository: PreferencesRepository | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._repo = repository or PreferencesRepository()
		self._clock = clock or models.utcnow

	async def get_settings(self, user_id: str) -> models.ChatSettings:
		current = await self._repo.get_settings(user_id)
		return current or models.ChatSettings(user_id=user_id)

	async def accepts_new_chats(self, user_id: str) -> bool:
		return (await self.get_settings(user_id)).accept_new_chats

	async def contact_policy(self, user_id: str) -> str:
		return (await self.get_settings(user_id)).who_can_contact

	async def update_settings(
		self,
		user_id: str,
		*,
		accept_new_chats: Optional[bool] = None,
		who_can_contact: Optional[str] = None,
	) -> models.ChatSettings:
		"""Apply the given fields over the stored settings; omitted fields keep their value."""
		value = await self.get_settings(user_id)
		if accept_new_chats is not None:
			value.accept_new_chats = accept_new_chats
		if who_can_contact is not None:
			if who_can_contact not in models.CONTACT_POLICIES:
				raise ValidationFailed("invalid_contact_policy", "Unknown contact setting")
			value.who_can_contact = who_can_contact
		value.updated_at = self._clock()
		return await self._repo.upsert_settings(value)

	async def list_quick_replies(self, user_id: str) -> List[models.QuickReply]:
		return await self._repo.list_quick_replies(user_id)

	async def create_quick_reply(
		self,
		user_id: str,
		*,
		title: str,
		content: str,
		category: Optional[str] = None,
		shortcut: Optional[str] = None,
		sort_order: int = 0,
	) -> models.QuickReply:
		title = (title or "").strip()
		content = (content or "").strip()
		if not title:
			raise ValidationFailed("missing_title", "Quick replies need a title")
		if not content:
			raise ValidationFailed("missing_content", "Quick replies need content")
		now = self._clock()
		reply = models.QuickReply(
			id=str(ulid.new()),
			user_id=user_id,
			title=title,
			content=content,
			category=(category or "").strip() or None,
			shortcut=(shortcut or "").strip() or None,
			sort_order=sort_order,
			created_at=now,
			updated_at=now,
		)
		return await self._repo.save_quick_reply(reply)

	async def update_quick_reply(self, user_id: str, reply_id: str, changes: Dict[str, object]) -> models.QuickReply:
		reply = await self._require_owned(user_id, reply_id)
		for field_name in _QUICK_REPLY_FIELDS:
			if field_name not in changes or changes[field_name] is None:
				continue
			value = changes[field_name]
			if isinstance(value, str):
				value = value.strip()
			setattr(reply, field_name, value)
		if not reply.title:
			raise ValidationFailed("missing_title", "Quick replies need a title")
		if not reply.content:
			raise ValidationFailed("missing_content", "Quick replies need content")
		reply.updated_at = self._clock()
		return await self._repo.save_quick_reply(reply)

	async def delete_quick_reply(self, user_id: str, reply_id: str) -> None:
		await self._require_owned(user_id, reply_id)
		await self._repo.delete_quick_reply(user_id, reply_id)

	async def _require_owned(self, user_id: str, reply_id: str) -> models.QuickReply:
		reply = await self._repo.get_quick_reply(reply_id)
		if reply is None or reply.user_id != user_id:
			raise NotFound("quick_reply_not_found", "Quick reply not found")
		return reply


async def reset_preferences_state() -> None:
	"""Test helper to clear in-memory preferences."""
	async with _STORE._lock:  # type: ignore[attr-defined]
		_STORE.settings.clear()
		_STORE.quick_replies.clear()
