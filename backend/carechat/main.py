"""FastAPI application for the carechat messaging backend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from carechat import obs
from carechat.api import attachments, messages, ops, preferences, presence, threads, users
from carechat.api.errors import install_error_handlers
from carechat.api.middleware_request_id import RequestIdMiddleware
from carechat.domain.messaging.search import get_thread_search
from carechat.infra import postgres
from carechat.infra.redis import close_redis
from carechat.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	strategy = await get_thread_search().configure(settings.search_backend)
	logger.info(
		"startup_complete",
		extra={"service": settings.service_name, "env": settings.environment, "search": strategy},
	)
	try:
		yield
	finally:
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="carechat messaging", lifespan=lifespan)
install_error_handlers(app)
obs.init(app)
app.add_middleware(RequestIdMiddleware)

app.include_router(threads.router)
app.include_router(messages.router)
app.include_router(attachments.router)
app.include_router(users.router)
app.include_router(preferences.router)
app.include_router(presence.router)
app.include_router(ops.router)
