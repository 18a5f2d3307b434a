"""Liveness, readiness and the Prometheus scrape endpoint."""

from __future__ import annotations

import hmac
from typing import Optional

import asyncpg
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from starlette.responses import Response

from carechat.domain.messaging.exceptions import Forbidden
from carechat.domain.messaging.search import get_thread_search
from carechat.infra.postgres import get_pool
from carechat.infra.redis import redis_client
from carechat.settings import settings

router = APIRouter(tags=["ops"])


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None),
) -> None:
	"""Metrics are public only when configured so; otherwise the admin token is required."""
	if settings.obs_metrics_public:
		return
	presented = x_admin_token
	if not presented and authorization and authorization.lower().startswith("bearer "):
		presented = authorization[7:].strip()
	expected = settings.obs_admin_token
	if not expected or not presented or not hmac.compare_digest(presented, expected):
		raise Forbidden("forbidden", "Metrics require the admin token")


async def _postgres_status() -> str:
	try:
		pool = await get_pool()
		async with pool.acquire() as conn:
			await conn.fetchval("SELECT 1")
	except (AssertionError, OSError, asyncpg.PostgresError):
		return "down"
	return "ok"


async def _redis_status() -> str:
	try:
		await redis_client.ping()
	except (RedisError, OSError):
		return "down"
	return "ok"


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name}


@router.get("/health/ready")
async def health_ready() -> JSONResponse:
	checks = {
		"postgres": await _postgres_status(),
		# Redis only backs rate limits and the outbox; both degrade gracefully.
		"redis": await _redis_status(),
		"search": get_thread_search().strategy,
	}
	ready = checks["postgres"] == "ok"
	return JSONResponse({"status": "ok" if ready else "degraded", "checks": checks}, status_code=200 if ready else 503)


@router.get("/metrics", dependencies=[Depends(require_metrics_access)])
async def metrics_endpoint() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
