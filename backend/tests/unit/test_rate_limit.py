import pytest

from carechat.domain.messaging import policy
from carechat.domain.messaging.exceptions import RateLimited
from carechat.infra.rate_limit import allow
from carechat.settings import settings


@pytest.mark.asyncio
async def test_allows_within_budget_then_blocks():
    assert await allow("msg:send", "u1", limit=2, window_seconds=60, now=1_000.0)
    assert await allow("msg:send", "u1", limit=2, window_seconds=60, now=1_001.0)
    assert not await allow("msg:send", "u1", limit=2, window_seconds=60, now=1_002.0)
    # Budgets are per actor.
    assert await allow("msg:send", "u2", limit=2, window_seconds=60, now=1_002.0)


@pytest.mark.asyncio
async def test_new_window_resets_budget():
    assert await allow("msg:send", "u3", limit=1, window_seconds=60, now=1_199.0)
    assert not await allow("msg:send", "u3", limit=1, window_seconds=60, now=1_199.5)
    assert await allow("msg:send", "u3", limit=1, window_seconds=60, now=1_200.0)


@pytest.mark.asyncio
async def test_send_limit_raises_rate_limited(monkeypatch):
    monkeypatch.setattr(settings, "send_rate_limit_per_minute", 1)
    await policy.enforce_send_limit("sender")
    with pytest.raises(RateLimited):
        await policy.enforce_send_limit("sender")


@pytest.mark.asyncio
async def test_send_limit_fails_open_without_redis(monkeypatch):
    async def _offline(*args, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(policy.rate_limit, "allow", _offline)
    await policy.enforce_send_limit("sender")
