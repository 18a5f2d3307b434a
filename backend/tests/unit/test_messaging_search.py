import pytest

from carechat.domain.messaging.history import HistoryService
from carechat.domain.messaging.membership import MembershipService
from carechat.domain.messaging.messages import MessageService
from carechat.domain.messaging.repo import FullTextUnavailable, MessagingRepository, escape_like
from carechat.domain.messaging.schemas import SendMessageRequest
from carechat.domain.messaging.search import (
    STRATEGY_FULLTEXT,
    STRATEGY_SUBSTRING,
    ThreadSearch,
)
from carechat.domain.messaging.threads import ThreadService
from carechat.settings import settings


class _FullTextBrokenRepository(MessagingRepository):
    def __init__(self):
        super().__init__()
        self.fulltext_calls = 0

    async def search_fulltext(self, thread_id, *, viewer_id, term, limit):
        self.fulltext_calls += 1
        raise FullTextUnavailable("text search configuration missing")


async def _seed(clock, search=None):
    membership = MembershipService(clock=clock)
    threads = ThreadService(membership=membership, clock=clock)
    messages = MessageService(membership=membership, clock=clock)
    history = HistoryService(membership=membership, search=search)
    thread_id = await threads.open_direct("alice", "bob")
    for content in ("Blood test results", "see you tomorrow", "BLOOD pressure ok", "100% fine", "under_score"):
        await messages.send("alice", thread_id, SendMessageRequest(content=content))
    return thread_id, messages, history


@pytest.mark.asyncio
async def test_substring_search_is_case_insensitive_and_newest_first(clock):
    thread_id, _, history = await _seed(clock)
    results = await history.search("bob", thread_id, "blood")
    assert [m.content for m in results] == ["BLOOD pressure ok", "Blood test results"]


@pytest.mark.asyncio
async def test_search_blank_query_returns_nothing(clock):
    thread_id, _, history = await _seed(clock)
    assert await history.search("bob", thread_id, "   ") == []
    assert await history.search("bob", thread_id, None) == []


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(clock):
    thread_id, _, history = await _seed(clock)
    assert [m.content for m in await history.search("bob", thread_id, "%")] == ["100% fine"]
    assert [m.content for m in await history.search("bob", thread_id, "_")] == ["under_score"]
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


@pytest.mark.asyncio
async def test_search_skips_deleted_and_hidden(clock):
    thread_id, messages, history = await _seed(clock)
    results = await history.search("bob", thread_id, "blood")
    await messages.soft_delete("alice", results[0].id)
    await messages.hide_for_me("bob", results[1].id)
    assert await history.search("bob", thread_id, "blood") == []
    alice_view = await history.search("alice", thread_id, "blood")
    assert [m.content for m in alice_view] == ["Blood test results"]


@pytest.mark.asyncio
async def test_auto_strategy_without_fulltext_uses_substring():
    search = ThreadSearch(MessagingRepository())
    assert await search.configure("auto") == STRATEGY_SUBSTRING
    assert await search.configure("fulltext") == STRATEGY_FULLTEXT
    assert await search.configure("substring") == STRATEGY_SUBSTRING


@pytest.mark.asyncio
async def test_fulltext_failure_falls_back_to_substring(clock):
    repo = _FullTextBrokenRepository()
    search = ThreadSearch(repo)
    await search.configure("fulltext")
    thread_id, _, history = await _seed(clock, search=search)

    results = await history.search("bob", thread_id, "tomorrow")
    assert [m.content for m in results] == ["see you tomorrow"]
    assert search.strategy == STRATEGY_SUBSTRING

    # The process stays demoted.
    await history.search("bob", thread_id, "blood")
    assert repo.fulltext_calls == 1


@pytest.mark.asyncio
async def test_search_returns_newest_fifty_matches(clock, monkeypatch):
    monkeypatch.setattr(settings, "send_rate_limit_per_minute", 1000)
    thread_id, messages, history = await _seed(clock)
    for index in range(55):
        await messages.send("alice", thread_id, SendMessageRequest(content=f"refill note {index}"))

    results = await history.search("bob", thread_id, "refill")
    assert len(results) == 50
    assert [m.content for m in results] == [f"refill note {index}" for index in range(54, 4, -1)]
