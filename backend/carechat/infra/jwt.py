"""HS256 access tokens shared with the identity service.

Only verification matters in production; ``issue_access`` mints tokens for
tests and local tooling.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

import jwt

from carechat.settings import settings

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("sub", "exp", "iat", "iss", "aud")


def issue_access(subject: str, *, ttl: timedelta = timedelta(hours=1), claims: Mapping[str, Any] | None = None) -> str:
	issued = datetime.now(timezone.utc)
	body: Dict[str, Any] = {
		"sub": subject,
		"iss": settings.jwt_issuer,
		"aud": settings.jwt_audience,
		"iat": issued,
		"exp": issued + ttl,
	}
	body.update(claims or {})
	return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
	"""Verify signature, audience, issuer and expiry; raises ``jwt.InvalidTokenError``."""
	claims = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=settings.jwt_audience,
		issuer=settings.jwt_issuer,
		leeway=10,
		options={"require": list(REQUIRED_CLAIMS)},
	)
	if not str(claims.get("sub") or "").strip():
		raise jwt.InvalidTokenError("empty subject")
	return claims
