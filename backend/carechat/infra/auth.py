"""Caller identity for the messaging routes.

Tokens are issued upstream. Every route depends on ``get_current_user`` and
passes ``AuthenticatedUser.id`` into the services; in development the
``X-User-Id`` header stands in for a token.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from carechat.domain.messaging.exceptions import Unauthorized
from carechat.infra import jwt as jwt_helper
from carechat.obs import logging as obs_logging
from carechat.obs import metrics as obs_metrics
from carechat.settings import settings

_bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None


def user_from_token(token: str) -> AuthenticatedUser:
	try:
		claims = jwt_helper.decode_access(token)
	except InvalidTokenError:
		obs_metrics.AUTH_FAILURES.labels(reason="invalid_token").inc()
		raise Unauthorized("unauthorized", "Invalid or expired token") from None
	name = claims.get("name")
	return AuthenticatedUser(id=str(claims["sub"]).strip(), display_name=str(name) if name else None)


async def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> AuthenticatedUser:
	if credentials is not None:
		user = user_from_token(credentials.credentials)
	else:
		dev_id = (x_user_id or "").strip()
		if not dev_id or not settings.is_dev():
			obs_metrics.AUTH_FAILURES.labels(reason="missing").inc()
			raise Unauthorized()
		user = AuthenticatedUser(id=dev_id)
	# Request handling runs in its own task, so the binding ends with the request.
	obs_logging.bind_context(user_id=user.id)
	return user
