"""Assigns every request an id and echoes it in the ``X-Request-Id`` header."""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from carechat.api.request_id import REQUEST_ID_ATTR, REQUEST_ID_HEADER

# Client-supplied ids are accepted only when they are short and log-safe.
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._\-]{1,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        supplied = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = supplied if _ACCEPTED_ID.match(supplied) else uuid.uuid4().hex
        setattr(request.state, REQUEST_ID_ATTR, request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
