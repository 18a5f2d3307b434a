"""Profile lookups and contact search over the user directory.

The ``directory_users`` table belongs to the directory service; messaging only
reads it, to decorate thread lists and member panels and to find people to
start a conversation with.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import asyncpg

from carechat.domain.messaging import models, policy
from carechat.domain.messaging.repo import escape_like
from carechat.infra.postgres import get_pool

logger = logging.getLogger(__name__)


class Directory(Protocol):
	async def lookup(self, user_ids: Iterable[str]) -> Dict[str, models.Profile]:
		...

	async def search(
		self,
		term: str,
		*,
		exclude_id: str,
		entity_types: Sequence[str],
		limit: int,
	) -> List[models.Profile]:
		...


def _row_to_profile(row: asyncpg.Record) -> models.Profile:
	return models.Profile(
		user_id=str(row["user_id"]),
		display_name=row["display_name"] or "User",
		entity_type=row["entity_type"] or "business",
		avatar_url=row["avatar_url"],
	)


class PostgresDirectory:
	"""Reads the ``directory_users`` table owned by the directory service."""

	async def _pool(self) -> Optional[asyncpg.Pool]:
		try:
			return await get_pool()
		except AssertionError:
			return None

	async def lookup(self, user_ids: Iterable[str]) -> Dict[str, models.Profile]:
		ids = sorted({str(uid) for uid in user_ids if uid})
		if not ids:
			return {}
		pool = await self._pool()
		if pool is None:
			return {}
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT user_id, display_name, entity_type, avatar_url
				FROM directory_users
				WHERE user_id = ANY($1::text[])
				""",
				ids,
			)
		return {str(row["user_id"]): _row_to_profile(row) for row in rows}

	async def search(
		self,
		term: str,
		*,
		exclude_id: str,
		entity_types: Sequence[str],
		limit: int,
	) -> List[models.Profile]:
		pool = await self._pool()
		if pool is None:
			return []
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT user_id, display_name, entity_type, avatar_url
				FROM directory_users
				WHERE search_text ILIKE $1 ESCAPE '\\'
					AND user_id <> $2
					AND entity_type = ANY($3::text[])
					AND is_active IS DISTINCT FROM FALSE
				ORDER BY display_name, user_id
				LIMIT $4
				""",
				f"%{escape_like(term)}%",
				exclude_id,
				list(entity_types),
				limit,
			)
		return [_row_to_profile(row) for row in rows]


class StaticDirectory:
	"""Fixed profile map for local runs and tests; searches display names."""

	def __init__(self, profiles: Optional[Mapping[str, models.Profile]] = None) -> None:
		self._profiles = dict(profiles or {})

	async def lookup(self, user_ids: Iterable[str]) -> Dict[str, models.Profile]:
		return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}

	async def search(
		self,
		term: str,
		*,
		exclude_id: str,
		entity_types: Sequence[str],
		limit: int,
	) -> List[models.Profile]:
		needle = term.casefold()
		rows = [
			profile
			for profile in self._profiles.values()
			if needle in profile.display_name.casefold()
			and profile.user_id != exclude_id
			and profile.entity_type in entity_types
			and profile.is_active
		]
		rows.sort(key=lambda p: (p.display_name, p.user_id))
		return rows[:limit]


async def lookup_profiles(directory: Directory, user_ids: Iterable[str]) -> Dict[str, models.Profile]:
	"""Profiles for every id; a failing directory yields placeholders."""
	ids = list(dict.fromkeys(str(uid) for uid in user_ids))
	try:
		found = await directory.lookup(ids)
	except (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, OSError, RuntimeError):
		logger.warning("directory_lookup_failed", extra={"count": len(ids)}, exc_info=True)
		found = {}
	return {uid: found.get(uid) or models.Profile(user_id=uid) for uid in ids}


async def search_contacts(
	directory: Directory,
	caller_id: str,
	query: Optional[str],
	*,
	include_patients: bool = False,
) -> List[models.Profile]:
	"""People the caller can start a conversation with, matched on ``query``.

	Professionals are always searchable; patients only when ``include_patients``
	is set. The caller and deactivated accounts never appear. A blank query
	returns nothing rather than the whole directory.
	"""
	term = (query or "").strip().lower()
	if not term:
		return []
	entity_types = list(policy.PROFESSIONAL_ENTITY_TYPES)
	if include_patients:
		entity_types.append(policy.PATIENT_ENTITY_TYPE)
	return await directory.search(
		term,
		exclude_id=caller_id,
		entity_types=entity_types,
		limit=policy.DIRECTORY_SEARCH_LIMIT,
	)


_directory: Optional[Directory] = None


def get_directory() -> Directory:
	global _directory
	if _directory is None:
		_directory = PostgresDirectory()
	return _directory


def set_directory(directory: Optional[Directory]) -> None:
	global _directory
	_directory = directory
