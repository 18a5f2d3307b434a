import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from carechat.domain.messaging.directory import set_directory
from carechat.domain.messaging.preferences import reset_preferences_state
from carechat.domain.messaging.presence import reset_presence_state
from carechat.domain.messaging.repo import reset_memory_state
from carechat.domain.messaging.search import set_thread_search
from carechat.infra import postgres
from carechat.infra.object_store import set_object_store
from carechat.main import app
from carechat.settings import settings


class TickingClock:
	"""Deterministic clock; every reading moves time forward by ``step``."""

	def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)) -> None:
		self.current = start
		self.step = step

	def __call__(self) -> datetime:
		value = self.current
		self.current = self.current + self.step
		return value

	def advance(self, **kwargs) -> None:
		self.current = self.current + timedelta(**kwargs)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from carechat.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	postgres.set_pool(None)
	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via the X-User-Id header, which is only accepted in dev mode."""
	original_env = settings.environment
	original_limit = settings.send_rate_limit_per_minute
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.send_rate_limit_per_minute = original_limit


@pytest_asyncio.fixture(autouse=True)
async def reset_state():
	await reset_memory_state()
	await reset_preferences_state()
	await reset_presence_state()
	set_thread_search(None)
	set_object_store(None)
	set_directory(None)
	yield
	set_thread_search(None)
	set_object_store(None)
	set_directory(None)


@pytest.fixture
def clock():
	return TickingClock(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
