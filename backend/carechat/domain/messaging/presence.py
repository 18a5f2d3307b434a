"""Self-reported presence: status, an optional status line and last-seen time."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Optional

import asyncpg

from carechat.domain.messaging import models, policy
from carechat.domain.messaging.exceptions import ValidationFailed
from carechat.infra.postgres import get_pool


class _PresenceStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rows: Dict[str, models.Presence] = {}

	async def get(self, user_id: str) -> Optional[models.Presence]:
		async with self._lock:
			current = self.rows.get(user_id)
			return replace(current) if current else None

	async def upsert(self, value: models.Presence) -> models.Presence:
		async with self._lock:
			self.rows[value.user_id] = replace(value)
			return value


_STORE = _PresenceStore()


class PresenceRepository:
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

	async def get(self, user_id: str) -> Optional[models.Presence]:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.get(user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT user_id, status, status_message, last_seen_at, updated_at
				FROM user_presence
				WHERE user_id = $1
				""",
				user_id,
			)
		if not row:
			return None
		return models.Presence(
			user_id=str(row["user_id"]),
			status=row["status"],
			status_message=row["status_message"],
			last_seen_at=row["last_seen_at"],
			updated_at=row["updated_at"],
		)

	async def upsert(self, value: models.Presence) -> models.Presence:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.upsert(value)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO user_presence (user_id, status, status_message, last_seen_at, updated_at)
				VALUES ($1, $2, $3, $4, $5)
				ON CONFLICT (user_id) DO UPDATE SET
					status = EXCLUDED.status,
					status_message = EXCLUDED.status_message,
					last_seen_at = EXCLUDED.last_seen_at,
					updated_at = EXCLUDED.updated_at
				""",
				value.user_id,
				value.status,
				value.status_message,
				value.last_seen_at,
				value.updated_at,
			)
		return value


class PresenceService:
	def __init__(
		self,
		*,
		repository: PresenceRepository | None = None,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._repo = repository or PresenceRepository()
		self._clock = clock or models.utcnow

	async def get(self, user_id: str) -> models.Presence:
		"""Stored presence, or offline with no last-seen time for users never seen."""
		current = await self._repo.get(user_id)
		return current or models.Presence(user_id=user_id)

	async def update(
		self,
		user_id: str,
		*,
		status: Optional[str] = None,
		status_message: Optional[str] = None,
	) -> models.Presence:
		status = (status or "").strip() or models.PRESENCE_ONLINE
		if status not in models.PRESENCE_STATUSES:
			raise ValidationFailed("invalid_status", "Unknown presence status")
		message = (status_message or "").strip() or None
		if message and len(message) > policy.STATUS_MESSAGE_MAX_LEN:
			raise ValidationFailed(
				"status_message_too_long",
				f"Status messages are limited to {policy.STATUS_MESSAGE_MAX_LEN} characters",
			)
		now = self._clock()
		value = models.Presence(
			user_id=user_id,
			status=status,
			status_message=message,
			last_seen_at=now,
			updated_at=now,
		)
		return await self._repo.upsert(value)


async def reset_presence_state() -> None:
	"""Test helper to clear in-memory presence."""
	async with _STORE._lock:  # type: ignore[attr-defined]
		_STORE.rows.clear()
