"""Thread search strategies.

The strategy is picked once at startup. Full-text search uses Postgres
``websearch_to_tsquery``; when it fails at query time the process demotes
itself to substring matching for good.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import asyncpg

from carechat.domain.messaging import models
from carechat.domain.messaging.repo import FullTextUnavailable, MessagingRepository
from carechat.obs import metrics as obs_metrics

STRATEGY_AUTO = "auto"
STRATEGY_FULLTEXT = "fulltext"
STRATEGY_SUBSTRING = "substring"

logger = logging.getLogger(__name__)


class Searcher(Protocol):
	name: str

	async def search(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		...


class SubstringSearcher:
	name = STRATEGY_SUBSTRING

	def __init__(self, repository: MessagingRepository) -> None:
		self._repo = repository

	async def search(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		return await self._repo.search_substring(thread_id, viewer_id=viewer_id, term=term, limit=limit)


class FullTextSearcher:
	name = STRATEGY_FULLTEXT

	def __init__(self, repository: MessagingRepository) -> None:
		self._repo = repository

	async def search(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		return await self._repo.search_fulltext(thread_id, viewer_id=viewer_id, term=term, limit=limit)


class ThreadSearch:
	def __init__(self, repository: MessagingRepository | None = None) -> None:
		self._repo = repository or MessagingRepository()
		self._fallback = SubstringSearcher(self._repo)
		self._active: Searcher = self._fallback

	@property
	def strategy(self) -> str:
		return self._active.name

	async def configure(self, preference: str = STRATEGY_AUTO) -> str:
		if preference == STRATEGY_SUBSTRING:
			self._active = self._fallback
		elif preference == STRATEGY_FULLTEXT:
			self._active = FullTextSearcher(self._repo)
		else:
			try:
				capable = await self._repo.fulltext_available()
			except (asyncpg.PostgresError, OSError):
				logger.warning("search_capability_check_failed", exc_info=True)
				capable = False
			self._active = FullTextSearcher(self._repo) if capable else self._fallback
		logger.info("search_strategy_selected", extra={"strategy": self._active.name, "preference": preference})
		return self._active.name

	async def search(self, thread_id: str, *, viewer_id: str, term: str, limit: int) -> List[models.Message]:
		searcher = self._active
		if searcher is not self._fallback:
			try:
				results = await searcher.search(thread_id, viewer_id=viewer_id, term=term, limit=limit)
			except (FullTextUnavailable, asyncpg.PostgresError):
				logger.warning("fulltext_search_failed", extra={"thread_id": thread_id}, exc_info=True)
				obs_metrics.inc_search_fallback()
				self._active = self._fallback
			else:
				obs_metrics.inc_search(searcher.name)
				return results
		obs_metrics.inc_search(self._fallback.name)
		return await self._fallback.search(thread_id, viewer_id=viewer_id, term=term, limit=limit)


_search: Optional[ThreadSearch] = None


def get_thread_search() -> ThreadSearch:
	global _search
	if _search is None:
		_search = ThreadSearch()
	return _search


def set_thread_search(search: Optional[ThreadSearch]) -> None:
	global _search
	_search = search
