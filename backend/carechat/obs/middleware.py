"""Per-request metrics and one access-log line per request."""

from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from carechat.obs import logging as obs_logging
from carechat.obs import metrics

access_logger = logging.getLogger("carechat.http")


def route_label(request: Request) -> str:
	"""Templated route path so metric labels stay bounded (``/messaging/threads/{thread_id}``)."""
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	if path:
		return path
	return "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		token = obs_logging.bind_context(
			request_id=getattr(request.state, "request_id", None),
			route=request.url.path,
		)
		started = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
			return response
		finally:
			elapsed = time.perf_counter() - started
			label = route_label(request)
			metrics.observe_request(label, request.method, status_code, elapsed)
			access_logger.log(
				logging.WARNING if status_code >= 500 else logging.INFO,
				"http_request",
				extra={
					"method": request.method,
					"route": label,
					"status": status_code,
					"latency_ms": round(elapsed * 1000, 2),
				},
			)
			obs_logging.reset_context(token)
